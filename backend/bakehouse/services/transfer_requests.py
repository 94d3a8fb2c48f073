"""Transfer request lifecycle: create, list and status transitions.

A request records intent, not a reservation: creating one never touches the
stock ledger. Status changes follow TransferStatus.can_transition_to and are
applied with a check-and-set UPDATE so two approvers can never both move the
same request out of ``pending``.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bakehouse.core.config import settings
from bakehouse.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
)
from bakehouse.models.transfer_request import TransferRequest, TransferRequestItem, TransferStatus
from bakehouse.services.availability import AvailabilityCalculator
from bakehouse.services.catalog import CatalogService
from bakehouse.services.stock_ledger import to_quantity

logger = logging.getLogger(__name__)


class TransferRequestService:
    """Service owning the TransferRequest records."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def create(
        self,
        store_id: int,
        items: Iterable[dict],
        requested_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransferRequest:
        """Create a pending request. Does not commit.

        Each item is a dict with ``ingredient_id`` and ``quantity`` and
        optionally ``name`` and ``unit`` (defaulted from the catalog).
        """
        store = self.catalog.get_store(store_id)
        items = list(items)
        if not items:
            raise ValueError("A transfer request needs at least one item")

        ingredients = self.catalog.get_ingredients(item["ingredient_id"] for item in items)
        lines = []
        for item in items:
            ingredient = ingredients.get(item["ingredient_id"])
            if ingredient is None:
                raise NotFoundError("Ingredient", item["ingredient_id"])
            quantity = to_quantity(item["quantity"])
            if quantity <= 0:
                raise ValueError(f"Quantity for '{ingredient.name}' must be positive")
            lines.append(TransferRequestItem(
                ingredient_id=ingredient.id,
                name=item.get("name") or ingredient.name,
                quantity=quantity,
                unit=item.get("unit") or ingredient.unit,
            ))

        if settings.reject_requests_over_availability:
            self._check_availability(store.id, store.name, lines)

        request = TransferRequest(
            store_id=store.id,
            status=TransferStatus.PENDING,
            requested_by=requested_by or settings.default_requester,
            notes=notes,
            items=lines,
        )
        self.db.add(request)
        self.db.flush()
        logger.info(
            f"Transfer request {request.id} created for store {store.id} "
            f"by {request.requested_by} ({len(lines)} items)"
        )
        return request

    def get(self, request_id: int) -> TransferRequest:
        request = self.db.get(TransferRequest, request_id)
        if request is None:
            raise NotFoundError("Transfer request", request_id)
        return request

    def find_by_ids(self, request_ids: Iterable[int]) -> List[TransferRequest]:
        ids = list(dict.fromkeys(request_ids))
        if not ids:
            return []
        return list(
            self.db.scalars(
                select(TransferRequest).where(TransferRequest.id.in_(ids)).order_by(TransferRequest.id)
            ).all()
        )

    def list_by_store(
        self,
        store_id: int,
        status: Optional[TransferStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[TransferRequest]:
        """Requests of one store, newest first. Date bounds are inclusive days."""
        self.catalog.get_store(store_id)
        return self._list(store_id, status, start_date, end_date, limit)

    def list_all(
        self,
        status: Optional[TransferStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[TransferRequest]:
        """Requests across every store for the approval view."""
        return self._list(None, status, start_date, end_date, limit)

    def transition_status(
        self,
        request_id: int,
        from_status: TransferStatus,
        to_status: TransferStatus,
        actor: Optional[str] = None,
    ) -> TransferRequest:
        """Move a request from ``from_status`` to ``to_status``. Does not commit.

        Raises InvalidTransitionError for transitions outside the state
        machine and ConcurrencyConflictError when the stored status is no
        longer ``from_status`` because another writer got there first.
        """
        if not from_status.can_transition_to(to_status):
            raise InvalidTransitionError(request_id, from_status.value, to_status.value)

        now = datetime.now(timezone.utc)
        values = {"status": to_status}
        if to_status in (TransferStatus.APPROVED, TransferStatus.REJECTED):
            values["reviewed_by"] = actor
            values["reviewed_at"] = now
        elif to_status == TransferStatus.COMPLETED:
            values["completed_at"] = now

        result = self.db.execute(
            update(TransferRequest)
            .where(TransferRequest.id == request_id, TransferRequest.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self.db.scalar(select(TransferRequest.status).where(TransferRequest.id == request_id))
            if current is None:
                raise NotFoundError("Transfer request", request_id)
            raise ConcurrencyConflictError(
                f"transition of transfer request {request_id}",
                reason=f"status is '{current.value}', expected '{from_status.value}'",
            )

        request = self.db.get(TransferRequest, request_id)
        self.db.expire(request)
        return request

    # ===== HELPERS =====

    def _list(
        self,
        store_id: Optional[int],
        status: Optional[TransferStatus],
        start_date: Optional[date],
        end_date: Optional[date],
        limit: Optional[int],
    ) -> List[TransferRequest]:
        query = select(TransferRequest)
        if store_id is not None:
            query = query.where(TransferRequest.store_id == store_id)
        if status is not None:
            query = query.where(TransferRequest.status == status)
        if start_date is not None:
            query = query.where(
                TransferRequest.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc)
            )
        if end_date is not None:
            query = query.where(
                TransferRequest.created_at
                < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )
        query = query.order_by(TransferRequest.created_at.desc(), TransferRequest.id.desc())
        query = query.limit(limit or settings.request_list_limit)
        return list(self.db.scalars(query).all())

    def _check_availability(self, store_id: int, store_name: str, lines: List[TransferRequestItem]) -> None:
        demand: dict = {}
        for line in lines:
            demand[line.ingredient_id] = demand.get(line.ingredient_id, Decimal("0")) + line.quantity

        calculator = AvailabilityCalculator(self.db)
        for line in lines:
            required = demand.pop(line.ingredient_id, None)
            if required is None:
                continue
            available = calculator.available_to_promise(store_id, line.ingredient_id)
            if required > available:
                raise InsufficientStockError(
                    store_id=store_id,
                    ingredient_id=line.ingredient_id,
                    required=required,
                    available=available,
                    ingredient_name=line.name,
                    store_name=store_name,
                    unit=line.unit,
                )
