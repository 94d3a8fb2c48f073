"""Tests for the approval engine: single, bulk, reject, complete and mobile approval."""

import pytest
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from bakehouse.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NothingToApproveError,
    NotFoundError,
    PermissionDeniedError,
)
from bakehouse.models.stock import MovementReason, StockMovement
from bakehouse.models.transfer_request import TransferStatus
from bakehouse.services.approval import ApprovalEngine, is_lock_conflict
from bakehouse.services.availability import AvailabilityCalculator
from bakehouse.services.stock_ledger import StockLedgerService
from bakehouse.services.transfer_requests import TransferRequestService


def _qty(db, store, ingredient) -> Decimal:
    return StockLedgerService(db).get_main_warehouse(store.id, ingredient.id)


def _status(db, request_id) -> TransferStatus:
    return TransferRequestService(db).get(request_id).status


class TestApprove:
    def test_approve_deducts_and_flips_status(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        r1 = make_request(test_store.id, [(flour.id, 4)])

        approved = ApprovalEngine(db_session).approve(r1.id, approved_by="maria")

        assert approved.status == TransferStatus.APPROVED
        assert approved.reviewed_by == "maria"
        assert approved.reviewed_at is not None
        assert _qty(db_session, test_store, flour) == Decimal("6")

    def test_approve_records_movement_per_item(self, db_session, test_store, flour, butter, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        set_stock(test_store.id, butter.id, 5)
        request = make_request(test_store.id, [(flour.id, 4), (butter.id, 2)])

        ApprovalEngine(db_session).approve(request.id, approved_by="maria")

        movements = db_session.scalars(
            select(StockMovement).where(StockMovement.reason == MovementReason.TRANSFER_REQUEST.value)
        ).all()
        assert {(m.ingredient_id, m.qty_delta) for m in movements} == {
            (flour.id, Decimal("-4")),
            (butter.id, Decimal("-2")),
        }
        assert all(m.ref_id == request.id and m.created_by == "maria" for m in movements)

    def test_shortfall_on_any_item_changes_nothing(
        self, db_session, test_store, flour, butter, set_stock, make_request
    ):
        set_stock(test_store.id, flour.id, 10)
        set_stock(test_store.id, butter.id, 1)
        request = make_request(test_store.id, [(flour.id, 4), (butter.id, 2)])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).approve(request.id)

        err = exc_info.value
        assert err.ingredient_id == butter.id
        assert err.store_id == test_store.id
        assert err.required == Decimal("2")
        assert err.available == Decimal("1")
        assert _qty(db_session, test_store, flour) == Decimal("10")
        assert _qty(db_session, test_store, butter) == Decimal("1")
        assert _status(db_session, request.id) == TransferStatus.PENDING

    def test_duplicate_lines_are_checked_together(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 6), (flour.id, 6)])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).approve(request.id)

        assert exc_info.value.required == Decimal("12")
        assert _qty(db_session, test_store, flour) == Decimal("10")

    def test_checks_live_stock_not_availability(self, db_session, test_store, flour, set_stock, make_request):
        # Two pending requests reserve 8 of 10, yet each one alone fits on-hand stock
        set_stock(test_store.id, flour.id, 10)
        first = make_request(test_store.id, [(flour.id, 4)])
        make_request(test_store.id, [(flour.id, 4)])
        assert AvailabilityCalculator(db_session).available_to_promise(test_store.id, flour.id) == Decimal("2")

        ApprovalEngine(db_session).approve(first.id)

        assert _qty(db_session, test_store, flour) == Decimal("6")

    @pytest.mark.parametrize("prior", ["approve", "reject", "complete"])
    def test_approving_non_pending_request_fails(
        self, db_session, test_store, flour, set_stock, make_request, prior
    ):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        if prior == "reject":
            engine.reject(request.id)
        else:
            engine.approve(request.id)
            if prior == "complete":
                engine.complete(request.id)
        before = _qty(db_session, test_store, flour)

        with pytest.raises(InvalidTransitionError):
            engine.approve(request.id)

        assert _qty(db_session, test_store, flour) == before

    def test_unknown_request(self, db_session):
        with pytest.raises(NotFoundError):
            ApprovalEngine(db_session).approve(404)

    def test_lost_status_race_is_retried_then_reported(
        self, db_session, test_store, flour, set_stock, make_request, monkeypatch
    ):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        calls = []

        def always_conflict(request_id, from_status, to_status, actor=None):
            calls.append(request_id)
            raise ConcurrencyConflictError(f"transition of transfer request {request_id}")

        monkeypatch.setattr(engine.requests, "transition_status", always_conflict)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            engine.approve(request.id)

        assert exc_info.value.attempts == len(calls) == 3
        # Every attempt was rolled back, including its decrement
        assert _qty(db_session, test_store, flour) == Decimal("10")
        assert _status(db_session, request.id) == TransferStatus.PENDING

    def test_conflict_then_success(self, db_session, test_store, flour, set_stock, make_request, monkeypatch):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        real_transition = engine.requests.transition_status
        attempts = []

        def flaky(*args, **kwargs):
            attempts.append(1)
            if len(attempts) == 1:
                raise ConcurrencyConflictError("transition")
            return real_transition(*args, **kwargs)

        monkeypatch.setattr(engine.requests, "transition_status", flaky)

        engine.approve(request.id)

        assert len(attempts) == 2
        assert _qty(db_session, test_store, flour) == Decimal("6")
        assert _status(db_session, request.id) == TransferStatus.APPROVED


class TestRejectAndComplete:
    def test_reject_leaves_stock_alone(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])

        rejected = ApprovalEngine(db_session).reject(request.id, rejected_by="maria")

        assert rejected.status == TransferStatus.REJECTED
        assert rejected.reviewed_by == "maria"
        assert _qty(db_session, test_store, flour) == Decimal("10")

    def test_reject_approved_request_fails(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        engine.approve(request.id)

        with pytest.raises(InvalidTransitionError):
            engine.reject(request.id)

    def test_complete_requires_approval(self, db_session, test_store, flour, make_request):
        request = make_request(test_store.id, [(flour.id, 4)])
        with pytest.raises(InvalidTransitionError):
            ApprovalEngine(db_session).complete(request.id)

    def test_complete_stamps_time(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        engine.approve(request.id)

        completed = engine.complete(request.id)

        assert completed.status == TransferStatus.COMPLETED
        assert completed.completed_at is not None
        assert _qty(db_session, test_store, flour) == Decimal("6")


class TestUpdateStatus:
    def test_approving_through_status_update_deducts(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])

        ApprovalEngine(db_session).update_status(request.id, TransferStatus.APPROVED, actor="maria")

        assert _qty(db_session, test_store, flour) == Decimal("6")

    def test_back_to_pending_is_invalid(self, db_session, test_store, flour, make_request):
        request = make_request(test_store.id, [(flour.id, 4)])
        with pytest.raises(InvalidTransitionError):
            ApprovalEngine(db_session).update_status(request.id, TransferStatus.PENDING)


class TestMobileApprove:
    def test_manager_can_approve(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])

        approved = ApprovalEngine(db_session).approve_as_manager(request.id, "maria")

        assert approved.status == TransferStatus.APPROVED
        assert approved.reviewed_by == "maria"

    def test_other_users_are_refused(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])

        with pytest.raises(PermissionDeniedError):
            ApprovalEngine(db_session).approve_as_manager(request.id, "tom")

        assert _qty(db_session, test_store, flour) == Decimal("10")
        assert _status(db_session, request.id) == TransferStatus.PENDING


class TestBulkApprove:
    def test_aggregated_demand_fits(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        r2 = make_request(test_store.id, [(flour.id, 4)])
        r3 = make_request(test_store.id, [(flour.id, 4)])
        assert AvailabilityCalculator(db_session).available_to_promise(test_store.id, flour.id) == Decimal("2")

        result = ApprovalEngine(db_session).bulk_approve([r2.id, r3.id], approved_by="maria")

        assert result == {"approved_count": 2, "request_ids": [r2.id, r3.id]}
        assert _qty(db_session, test_store, flour) == Decimal("2")
        assert _status(db_session, r2.id) == TransferStatus.APPROVED
        assert _status(db_session, r3.id) == TransferStatus.APPROVED

    def test_aggregated_shortfall_aborts_batch(self, db_session, test_store, sugar, set_stock, make_request):
        set_stock(test_store.id, sugar.id, 5)
        r4 = make_request(test_store.id, [(sugar.id, 3)])
        r5 = make_request(test_store.id, [(sugar.id, 4)])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).bulk_approve([r4.id, r5.id])

        err = exc_info.value
        assert err.ingredient_id == sugar.id
        assert err.ingredient_name == "Sugar"
        assert err.required == Decimal("7")
        assert err.available == Decimal("5")
        assert _qty(db_session, test_store, sugar) == Decimal("5")
        assert _status(db_session, r4.id) == TransferStatus.PENDING
        assert _status(db_session, r5.id) == TransferStatus.PENDING

    def test_five_plus_seven_is_checked_as_twelve(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        a = make_request(test_store.id, [(flour.id, 5)])
        b = make_request(test_store.id, [(flour.id, 7)])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).bulk_approve([a.id, b.id])

        assert exc_info.value.required == Decimal("12")

    def test_shortfall_in_one_store_blocks_every_store(
        self, db_session, test_store, other_store, flour, set_stock, make_request
    ):
        set_stock(test_store.id, flour.id, 10)
        set_stock(other_store.id, flour.id, 1)
        ok = make_request(test_store.id, [(flour.id, 4)])
        short = make_request(other_store.id, [(flour.id, 3)])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).bulk_approve([ok.id, short.id])

        assert exc_info.value.store_id == other_store.id
        assert exc_info.value.store_name == "Harbour Cafe"
        assert _qty(db_session, test_store, flour) == Decimal("10")
        assert _status(db_session, ok.id) == TransferStatus.PENDING

    def test_stores_are_checked_separately(self, db_session, test_store, other_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 5)
        set_stock(other_store.id, flour.id, 5)
        a = make_request(test_store.id, [(flour.id, 4)])
        b = make_request(other_store.id, [(flour.id, 4)])

        result = ApprovalEngine(db_session).bulk_approve([a.id, b.id])

        assert result["approved_count"] == 2
        assert _qty(db_session, test_store, flour) == Decimal("1")
        assert _qty(db_session, other_store, flour) == Decimal("1")

    def test_non_pending_requests_are_skipped(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 10)
        done = make_request(test_store.id, [(flour.id, 4)])
        fresh = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        engine.approve(done.id)

        result = engine.bulk_approve([done.id, fresh.id, 999])

        assert result == {"approved_count": 1, "request_ids": [fresh.id]}
        assert _qty(db_session, test_store, flour) == Decimal("2")

    def test_nothing_pending(self, db_session, test_store, flour, make_request):
        request = make_request(test_store.id, [(flour.id, 1)])
        engine = ApprovalEngine(db_session)
        engine.reject(request.id)

        with pytest.raises(NothingToApproveError):
            engine.bulk_approve([request.id, 12345])


class TestFractionalApprovals:
    def test_three_tenths_approve_one_by_one(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, "0.3")
        requests = [make_request(test_store.id, [(flour.id, "0.1")]) for _ in range(3)]
        engine = ApprovalEngine(db_session)

        for request in requests:
            engine.approve(request.id)

        assert _qty(db_session, test_store, flour) == Decimal("0")
        assert all(_status(db_session, r.id) == TransferStatus.APPROVED for r in requests)

    def test_gram_level_request_is_debited_exactly(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, 1)
        request = make_request(test_store.id, [(flour.id, "0.125")])

        ApprovalEngine(db_session).approve(request.id)

        assert TransferRequestService(db_session).get(request.id).items[0].quantity == Decimal("0.125")
        assert _qty(db_session, test_store, flour) == Decimal("0.875")

    def test_fractional_shortfall_is_reported_exactly(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, "0.2")
        request = make_request(test_store.id, [(flour.id, "0.125"), (flour.id, "0.076")])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).approve(request.id)

        assert exc_info.value.required == Decimal("0.201")
        assert exc_info.value.available == Decimal("0.2")
        assert "need 0.201 bag, have 0.2 bag" in exc_info.value.message
        assert _qty(db_session, test_store, flour) == Decimal("0.2")

    def test_bulk_fractional_batch_uses_stock_exactly(
        self, db_session, test_store, other_store, flour, butter, set_stock, make_request
    ):
        set_stock(test_store.id, flour.id, "1.0")
        set_stock(other_store.id, butter.id, "0.75")
        a = make_request(test_store.id, [(flour.id, "0.3")])
        b = make_request(test_store.id, [(flour.id, "0.7")])
        c = make_request(other_store.id, [(butter.id, "0.25"), (butter.id, "0.5")])

        result = ApprovalEngine(db_session).bulk_approve([a.id, b.id, c.id])

        assert result["approved_count"] == 3
        assert _qty(db_session, test_store, flour) == Decimal("0")
        assert _qty(db_session, other_store, butter) == Decimal("0")

    def test_bulk_fractional_shortfall_by_one_thousandth(self, db_session, test_store, flour, set_stock, make_request):
        set_stock(test_store.id, flour.id, "1.0")
        a = make_request(test_store.id, [(flour.id, "0.3")])
        b = make_request(test_store.id, [(flour.id, "0.701")])

        with pytest.raises(InsufficientStockError) as exc_info:
            ApprovalEngine(db_session).bulk_approve([a.id, b.id])

        assert exc_info.value.required == Decimal("1.001")
        assert _qty(db_session, test_store, flour) == Decimal("1")
        assert _status(db_session, a.id) == TransferStatus.PENDING


class TestRetryPolicy:
    def test_non_lock_database_error_is_not_retried(
        self, db_session, test_store, flour, set_stock, make_request, monkeypatch
    ):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        calls = []

        def broken(*args, **kwargs):
            calls.append(1)
            raise OperationalError("UPDATE transfer_requests", {}, Exception("no such table: transfer_requests"))

        monkeypatch.setattr(engine.requests, "transition_status", broken)

        with pytest.raises(OperationalError):
            engine.approve(request.id)

        assert len(calls) == 1
        assert _qty(db_session, test_store, flour) == Decimal("10")
        assert _status(db_session, request.id) == TransferStatus.PENDING

    def test_locked_database_is_retried(self, db_session, test_store, flour, set_stock, make_request, monkeypatch):
        set_stock(test_store.id, flour.id, 10)
        request = make_request(test_store.id, [(flour.id, 4)])
        engine = ApprovalEngine(db_session)
        real_transition = engine.requests.transition_status
        calls = []

        def locked_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE transfer_requests", {}, Exception("database is locked"))
            return real_transition(*args, **kwargs)

        monkeypatch.setattr(engine.requests, "transition_status", locked_once)

        engine.approve(request.id)

        assert len(calls) == 2
        assert _qty(db_session, test_store, flour) == Decimal("6")

    def test_lock_conflict_classification(self):
        class PgError(Exception):
            pgcode = "40001"

        assert is_lock_conflict(OperationalError("SELECT 1", {}, PgError("could not serialize access")))
        assert is_lock_conflict(OperationalError("SELECT 1", {}, Exception("database is locked")))
        assert not is_lock_conflict(OperationalError("SELECT 1", {}, Exception("disk I/O error")))
        assert not is_lock_conflict(OperationalError("SELECT 1", {}, Exception("server closed the connection")))
