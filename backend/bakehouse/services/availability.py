"""Available-to-promise ("virtual stock") per store and ingredient.

available = max(0, main-warehouse on hand - sum of pending request quantities)

Pending requests are a soft reservation: nothing is locked, the sum is
recomputed on every read. The figure is an estimate for requesters building a
cart; approval always checks live on-hand stock instead.
"""

from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bakehouse.models.stock import StoreInventory
from bakehouse.models.transfer_request import TransferRequest, TransferRequestItem, TransferStatus
from bakehouse.services.catalog import CatalogService
from bakehouse.services.stock_ledger import StockLedgerService

ZERO = Decimal("0")


class AvailabilityCalculator:
    """Read-only join of pending requests and ledger entries for a store."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)
        self.ledger = StockLedgerService(db)

    def reserved_quantity(self, store_id: int, ingredient_id: int) -> Decimal:
        """Sum of the ingredient across the store's pending requests."""
        reserved = self.db.scalar(
            select(func.sum(TransferRequestItem.quantity))
            .join(TransferRequest, TransferRequestItem.request_id == TransferRequest.id)
            .where(
                TransferRequest.store_id == store_id,
                TransferRequest.status == TransferStatus.PENDING,
                TransferRequestItem.ingredient_id == ingredient_id,
            )
        )
        return reserved if reserved is not None else ZERO

    def available_to_promise(self, store_id: int, ingredient_id: int) -> Decimal:
        on_hand = self.ledger.get_main_warehouse(store_id, ingredient_id)
        return max(ZERO, on_hand - self.reserved_quantity(store_id, ingredient_id))

    def reserved_by_ingredient(self, store_id: int) -> Dict[int, Decimal]:
        rows = self.db.execute(
            select(
                TransferRequestItem.ingredient_id,
                func.sum(TransferRequestItem.quantity).label("reserved"),
            )
            .join(TransferRequest, TransferRequestItem.request_id == TransferRequest.id)
            .where(
                TransferRequest.store_id == store_id,
                TransferRequest.status == TransferStatus.PENDING,
            )
            .group_by(TransferRequestItem.ingredient_id)
        )
        return {row.ingredient_id: row.reserved or ZERO for row in rows}

    def availability_for_store(self, store_id: int) -> List[Dict[str, Any]]:
        """Availability of every active catalog ingredient in one store."""
        self.catalog.get_store(store_id)
        reserved = self.reserved_by_ingredient(store_id)
        on_hand = {
            row.ingredient_id: (row.main_qty, row.main_unit)
            for row in self.db.execute(
                select(StoreInventory.ingredient_id, StoreInventory.main_qty, StoreInventory.main_unit)
                .where(StoreInventory.store_id == store_id)
            )
        }

        items = []
        for ingredient in self.catalog.list_ingredients():
            qty, unit = on_hand.get(ingredient.id, (ZERO, ingredient.unit))
            pending = reserved.get(ingredient.id, ZERO)
            items.append({
                "ingredient_id": ingredient.id,
                "name": ingredient.name,
                "unit": unit or ingredient.unit,
                "on_hand": qty,
                "reserved": pending,
                "available": max(ZERO, qty - pending),
            })
        return items
