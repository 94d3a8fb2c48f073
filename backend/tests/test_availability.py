"""Tests for available-to-promise."""

import pytest
from decimal import Decimal

from bakehouse.core.exceptions import NotFoundError
from bakehouse.models.transfer_request import TransferStatus
from bakehouse.services.availability import AvailabilityCalculator
from bakehouse.services.transfer_requests import TransferRequestService


def test_no_entry_means_nothing_available(db_session, test_store, flour):
    calculator = AvailabilityCalculator(db_session)
    assert calculator.available_to_promise(test_store.id, flour.id) == Decimal("0")
    assert calculator.reserved_quantity(test_store.id, flour.id) == Decimal("0")


def test_pending_requests_reserve_stock(db_session, test_store, flour, set_stock, make_request):
    set_stock(test_store.id, flour.id, 10)
    make_request(test_store.id, [(flour.id, 3)])
    make_request(test_store.id, [(flour.id, 2), (flour.id, 1)])

    calculator = AvailabilityCalculator(db_session)
    assert calculator.reserved_quantity(test_store.id, flour.id) == Decimal("6")
    assert calculator.available_to_promise(test_store.id, flour.id) == Decimal("4")


def test_only_pending_requests_count(db_session, test_store, flour, set_stock, make_request):
    set_stock(test_store.id, flour.id, 10)
    make_request(test_store.id, [(flour.id, 3)])
    rejected = make_request(test_store.id, [(flour.id, 5)])
    TransferRequestService(db_session).transition_status(
        rejected.id, TransferStatus.PENDING, TransferStatus.REJECTED
    )
    db_session.commit()

    assert AvailabilityCalculator(db_session).available_to_promise(test_store.id, flour.id) == Decimal("7")


def test_other_stores_do_not_reserve(db_session, test_store, other_store, flour, set_stock, make_request):
    set_stock(test_store.id, flour.id, 10)
    make_request(other_store.id, [(flour.id, 8)])
    assert AvailabilityCalculator(db_session).available_to_promise(test_store.id, flour.id) == Decimal("10")


def test_never_negative(db_session, test_store, flour, set_stock, make_request):
    set_stock(test_store.id, flour.id, 5)
    make_request(test_store.id, [(flour.id, 4)])
    make_request(test_store.id, [(flour.id, 4)])

    calculator = AvailabilityCalculator(db_session)
    assert calculator.reserved_quantity(test_store.id, flour.id) == Decimal("8")
    assert calculator.available_to_promise(test_store.id, flour.id) == Decimal("0")


def test_availability_for_store(db_session, test_store, flour, butter, set_stock, make_request):
    set_stock(test_store.id, flour.id, 10)
    make_request(test_store.id, [(flour.id, 4), (butter.id, 1)])

    items = {item["name"]: item for item in AvailabilityCalculator(db_session).availability_for_store(test_store.id)}

    assert items["Flour"]["on_hand"] == Decimal("10")
    assert items["Flour"]["reserved"] == Decimal("4")
    assert items["Flour"]["available"] == Decimal("6")
    assert items["Butter"]["on_hand"] == Decimal("0")
    assert items["Butter"]["available"] == Decimal("0")
    assert items["Butter"]["unit"] == "box"


def test_availability_for_unknown_store(db_session):
    with pytest.raises(NotFoundError):
        AvailabilityCalculator(db_session).availability_for_store(404)


def test_fractional_reservations_are_exact(db_session, test_store, flour, set_stock, make_request):
    set_stock(test_store.id, flour.id, "0.3")
    make_request(test_store.id, [(flour.id, "0.1")])
    make_request(test_store.id, [(flour.id, "0.1"), (flour.id, "0.075")])

    calculator = AvailabilityCalculator(db_session)
    assert calculator.reserved_quantity(test_store.id, flour.id) == Decimal("0.275")
    assert calculator.available_to_promise(test_store.id, flour.id) == Decimal("0.025")

    items = {item["ingredient_id"]: item for item in calculator.availability_for_store(test_store.id)}
    assert items[flour.id]["reserved"] == Decimal("0.275")
    assert items[flour.id]["available"] == Decimal("0.025")
