"""Approval Engine - turns pending transfer requests into stock deductions.

Approving a request is two-phase:

1. Check: demand is summed per ingredient and compared against the live
   main-warehouse quantity (never against available-to-promise). A shortfall
   aborts before anything is written.
2. Commit: every item is taken with the ledger's atomic conditional
   decrement, then the request status is flipped with a check-and-set
   UPDATE. Both happen in one transaction.

Phase 1 only produces a good error message early. The conditional decrement
in phase 2 is what guarantees stock never goes negative when two approvals
race: the loser's UPDATE matches no row and the whole transaction rolls back.

Lost status races and database lock errors surface as
ConcurrencyConflictError and the whole operation is re-run from a fresh read,
up to ``settings.approval_max_retries`` attempts.
"""

import logging
import time
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from bakehouse.core.config import settings
from bakehouse.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NothingToApproveError,
    PermissionDeniedError,
)
from bakehouse.models.stock import MovementReason
from bakehouse.models.transfer_request import TransferRequest, TransferRequestItem, TransferStatus
from bakehouse.services.catalog import CatalogService
from bakehouse.services.stock_ledger import StockLedgerService
from bakehouse.services.transfer_requests import TransferRequestService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure, deadlock_detected, lock_not_available
LOCK_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def is_lock_conflict(error: OperationalError) -> bool:
    """True for lock and serialization failures that a fresh attempt can clear."""
    orig = error.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in LOCK_CONFLICT_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(text in message for text in SQLITE_LOCK_MESSAGES)


class _Demand:
    """Aggregated quantity of one ingredient across a set of request items."""

    __slots__ = ("ingredient_id", "name", "unit", "quantity")

    def __init__(self, item: TransferRequestItem):
        self.ingredient_id = item.ingredient_id
        self.name = item.name
        self.unit = item.unit
        self.quantity = Decimal("0")


def aggregate_demand(items: Iterable[TransferRequestItem]) -> Dict[int, _Demand]:
    """Sum item quantities per ingredient, keeping first-seen order."""
    demand: Dict[int, _Demand] = {}
    for item in items:
        entry = demand.get(item.ingredient_id)
        if entry is None:
            entry = demand[item.ingredient_id] = _Demand(item)
        entry.quantity += item.quantity
    return demand


class ApprovalEngine:
    """Approves, rejects and completes transfer requests.

    Every public operation owns its transaction: it commits on success and
    rolls back on any error.
    """

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)
        self.ledger = StockLedgerService(db)
        self.requests = TransferRequestService(db)

    # ===== SINGLE REQUEST =====

    def approve(self, request_id: int, approved_by: Optional[str] = None) -> TransferRequest:
        """Approve one pending request and deduct its items from the main warehouse."""
        request = self._run_with_retry(
            f"approval of transfer request {request_id}",
            lambda: self._approve_once(request_id, approved_by),
        )
        logger.info(
            f"Transfer request {request_id} approved by {approved_by or 'unknown'} "
            f"for store {request.store_id}"
        )
        return request

    def reject(self, request_id: int, rejected_by: Optional[str] = None) -> TransferRequest:
        """Reject a pending request. Stock is not touched."""
        request = self._run_with_retry(
            f"rejection of transfer request {request_id}",
            lambda: self._transition_once(request_id, TransferStatus.PENDING, TransferStatus.REJECTED, rejected_by),
        )
        logger.info(f"Transfer request {request_id} rejected by {rejected_by or 'unknown'}")
        return request

    def complete(self, request_id: int, completed_by: Optional[str] = None) -> TransferRequest:
        """Mark an approved request as delivered. Stock is not touched."""
        request = self._run_with_retry(
            f"completion of transfer request {request_id}",
            lambda: self._transition_once(request_id, TransferStatus.APPROVED, TransferStatus.COMPLETED, completed_by),
        )
        logger.info(f"Transfer request {request_id} completed")
        return request

    def update_status(
        self,
        request_id: int,
        status: TransferStatus,
        actor: Optional[str] = None,
    ) -> TransferRequest:
        """Generic status change, routed through the operation for the target status."""
        if status == TransferStatus.APPROVED:
            return self.approve(request_id, approved_by=actor)
        if status == TransferStatus.REJECTED:
            return self.reject(request_id, rejected_by=actor)
        if status == TransferStatus.COMPLETED:
            return self.complete(request_id, completed_by=actor)

        # Nothing transitions back to pending
        current = self.requests.get(request_id)
        raise InvalidTransitionError(request_id, current.status.value, status.value)

    def approve_as_manager(self, request_id: int, user_name: str) -> TransferRequest:
        """Approve from the mobile app; only the store's warehouse managers may do so."""
        request = self.requests.get(request_id)
        store = self.catalog.get_store(request.store_id)
        if not store.is_warehouse_manager(user_name):
            logger.warning(f"'{user_name}' tried to approve transfer request {request_id} without permission")
            raise PermissionDeniedError(store.id, user_name)
        return self.approve(request_id, approved_by=user_name)

    # ===== BULK =====

    def bulk_approve(self, request_ids: List[int], approved_by: Optional[str] = None) -> Dict[str, Any]:
        """Approve several requests, possibly across stores, all or nothing.

        Requests that are not pending are ignored. If any store lacks stock
        for its share of the batch, nothing is approved.
        """
        result = self._run_with_retry(
            f"bulk approval of {len(request_ids)} transfer requests",
            lambda: self._bulk_approve_once(request_ids, approved_by),
        )
        logger.info(
            f"Bulk approved {result['approved_count']} transfer requests "
            f"({len(request_ids)} selected) by {approved_by or 'unknown'}"
        )
        return result

    # ===== ATTEMPTS =====

    def _approve_once(self, request_id: int, approved_by: Optional[str]) -> TransferRequest:
        request = self.requests.get(request_id)
        if request.status != TransferStatus.PENDING:
            raise InvalidTransitionError(request_id, request.status.value, TransferStatus.APPROVED.value)

        self._check_stock(request.store_id, aggregate_demand(request.items))
        self._deduct(request, approved_by)
        return self.requests.transition_status(
            request.id, TransferStatus.PENDING, TransferStatus.APPROVED, actor=approved_by
        )

    def _transition_once(
        self,
        request_id: int,
        from_status: TransferStatus,
        to_status: TransferStatus,
        actor: Optional[str],
    ) -> TransferRequest:
        request = self.requests.get(request_id)
        if request.status != from_status:
            raise InvalidTransitionError(request_id, request.status.value, to_status.value)
        return self.requests.transition_status(request_id, from_status, to_status, actor=actor)

    def _bulk_approve_once(self, request_ids: List[int], approved_by: Optional[str]) -> Dict[str, Any]:
        pending = [
            request for request in self.requests.find_by_ids(request_ids)
            if request.status == TransferStatus.PENDING
        ]
        if not pending:
            raise NothingToApproveError(request_ids)

        by_store: Dict[int, List[TransferRequest]] = defaultdict(list)
        for request in pending:
            by_store[request.store_id].append(request)

        # Check every store before the first write so a shortfall anywhere aborts cleanly
        for store_id in sorted(by_store):
            items = [item for request in by_store[store_id] for item in request.items]
            self._check_stock(store_id, aggregate_demand(items))

        for request in pending:
            self._deduct(request, approved_by)
            self.requests.transition_status(
                request.id, TransferStatus.PENDING, TransferStatus.APPROVED, actor=approved_by
            )

        approved_ids = [request.id for request in pending]
        return {"approved_count": len(approved_ids), "request_ids": approved_ids}

    # ===== HELPERS =====

    def _check_stock(self, store_id: int, demand: Dict[int, _Demand]) -> None:
        """Raise InsufficientStockError for the first ingredient short of its demand."""
        on_hand = self.ledger.read_main_warehouse(store_id, demand.keys(), for_update=True)
        for ingredient_id, wanted in demand.items():
            available = on_hand.get(ingredient_id, Decimal("0"))
            if wanted.quantity > available:
                raise InsufficientStockError(
                    store_id=store_id,
                    ingredient_id=ingredient_id,
                    required=wanted.quantity,
                    available=available,
                    ingredient_name=wanted.name,
                    store_name=self.catalog.store_names([store_id]).get(store_id, ""),
                    unit=wanted.unit,
                )

    def _deduct(self, request: TransferRequest, approved_by: Optional[str]) -> None:
        for item in request.items:
            self.ledger.decrement_main_warehouse(
                request.store_id,
                item.ingredient_id,
                item.quantity,
                reason=MovementReason.TRANSFER_REQUEST,
                ref_type="transfer_request",
                ref_id=request.id,
                created_by=approved_by,
            )

    def _run_with_retry(self, operation: str, attempt_fn: Callable[[], T]) -> T:
        """Run ``attempt_fn`` and commit, re-running it on concurrency conflicts.

        The session is rolled back after every failed attempt, so each retry
        starts from the current committed state.
        """
        max_attempts = settings.approval_max_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                result = attempt_fn()
                self.db.commit()
                return result
            except (ConcurrencyConflictError, OperationalError) as e:
                self.db.rollback()
                if isinstance(e, OperationalError) and not is_lock_conflict(e):
                    logger.error(f"{operation} failed with a database error: {e}")
                    raise
                if attempt >= max_attempts:
                    logger.error(f"{operation} failed after {attempt} attempts: {e}")
                    raise ConcurrencyConflictError(operation, attempts=attempt, reason=str(e)) from e
                logger.warning(f"{operation} hit a concurrent update, retry {attempt}/{max_attempts - 1}: {e}")
                time.sleep(settings.approval_retry_backoff_ms * attempt / 1000)
            except Exception:
                self.db.rollback()
                raise
