"""Stock Ledger Service - per-store main-warehouse and post stock.

Owns the on-hand quantity of every (store, ingredient) pair, split between
the store's main warehouse and its production posts.

Rules:
- Quantities never go below zero. A decrement that would make a bucket
  negative is rejected with InsufficientStockError, never clamped.
- Decrements are a single conditional UPDATE (``... WHERE qty >= :amount``),
  so the sufficiency check and the write are one atomic step at the
  storage layer. Two concurrent callers can never both take the last units.
- Ledger entries are created lazily on the first movement for a pair and are
  never deleted, only zeroed.
- Every change appends a StockMovement row for audit.

The service never commits. Callers own the transaction so that an approval
can decrement several entries and flip request statuses atomically.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bakehouse.core.exceptions import InsufficientStockError
from bakehouse.db.types import QUANTITY_PLACES
from bakehouse.models.stock import (
    MAIN_BUCKET,
    MovementReason,
    Post,
    PostStock,
    StockMovement,
    StoreInventory,
)
from bakehouse.services.catalog import CatalogService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def to_quantity(value: Any) -> Decimal:
    """Coerce a user supplied quantity into a Decimal.

    Quantities finer than ``QUANTITY_PLACES`` decimals are rejected rather
    than rounded, so the ledger is always debited exactly what was asked.
    """
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid quantity: {value!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid quantity: {value!r}")
    if value.normalize().as_tuple().exponent < -QUANTITY_PLACES:
        raise ValueError(f"Quantity {value} has more than {QUANTITY_PLACES} decimal places")
    return value


def _positive(amount: Any) -> Decimal:
    amount = to_quantity(amount)
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    return amount


class StockLedgerService:
    """Service for reading and moving stock between ledger buckets."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    # ===== READS =====

    def get_entry(self, store_id: int, ingredient_id: int) -> Optional[StoreInventory]:
        return self.db.scalar(
            select(StoreInventory).where(
                StoreInventory.store_id == store_id,
                StoreInventory.ingredient_id == ingredient_id,
            )
        )

    def get_main_warehouse(self, store_id: int, ingredient_id: int) -> Decimal:
        """Current on-hand main-warehouse quantity; 0 when no entry exists yet."""
        qty = self.db.scalar(
            select(StoreInventory.main_qty).where(
                StoreInventory.store_id == store_id,
                StoreInventory.ingredient_id == ingredient_id,
            )
        )
        return qty if qty is not None else ZERO

    def read_main_warehouse(
        self,
        store_id: int,
        ingredient_ids: Iterable[int],
        for_update: bool = False,
    ) -> Dict[int, Decimal]:
        """Live main-warehouse quantities for several ingredients of one store.

        Missing entries are reported as 0. With ``for_update`` the rows are
        locked until the end of the transaction on backends that support
        row locks.
        """
        ids = set(ingredient_ids)
        if not ids:
            return {}
        query = select(StoreInventory.ingredient_id, StoreInventory.main_qty).where(
            StoreInventory.store_id == store_id,
            StoreInventory.ingredient_id.in_(ids),
        )
        if for_update:
            query = query.with_for_update()
        found = {row.ingredient_id: row.main_qty for row in self.db.execute(query)}
        return {ingredient_id: found.get(ingredient_id, ZERO) for ingredient_id in ids}

    def get_post_stock(self, store_id: int, ingredient_id: int) -> List[PostStock]:
        return list(
            self.db.scalars(
                select(PostStock)
                .join(StoreInventory, PostStock.inventory_id == StoreInventory.id)
                .where(
                    StoreInventory.store_id == store_id,
                    StoreInventory.ingredient_id == ingredient_id,
                )
                .order_by(PostStock.post)
            ).all()
        )

    def get_post_quantity(self, store_id: int, ingredient_id: int, post: Post) -> Decimal:
        qty = self.db.scalar(
            select(PostStock.qty)
            .join(StoreInventory, PostStock.inventory_id == StoreInventory.id)
            .where(
                StoreInventory.store_id == store_id,
                StoreInventory.ingredient_id == ingredient_id,
                PostStock.post == post,
            )
        )
        return qty if qty is not None else ZERO

    def list_store_stock(self, store_id: int) -> Dict[str, Any]:
        """Every active catalog ingredient with its main-warehouse stock and value."""
        self.catalog.get_store(store_id)
        entries = {
            entry.ingredient_id: entry
            for entry in self.db.scalars(
                select(StoreInventory).where(StoreInventory.store_id == store_id)
            ).all()
        }

        items = []
        grand_total = ZERO
        for ingredient in self.catalog.list_ingredients():
            entry = entries.get(ingredient.id)
            qty = entry.main_qty if entry else ZERO
            value = qty * (ingredient.price or ZERO)
            grand_total += value
            items.append({
                "ingredient_id": ingredient.id,
                "name": ingredient.name,
                "specs": ingredient.specs,
                "quantity": float(qty),
                "unit": (entry.main_unit if entry and entry.main_unit else ingredient.unit),
                "price": float(ingredient.price) if ingredient.price is not None else None,
                "total_price": round(float(value), 2),
                "version": entry.version if entry else None,
                "last_updated": entry.updated_at.isoformat() if entry and entry.updated_at else None,
            })
        return {"items": items, "grand_total": round(float(grand_total), 2)}

    def list_movements(
        self,
        store_id: int,
        ingredient_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[StockMovement]:
        query = select(StockMovement).where(StockMovement.store_id == store_id)
        if ingredient_id is not None:
            query = query.where(StockMovement.ingredient_id == ingredient_id)
        query = query.order_by(StockMovement.ts.desc(), StockMovement.id.desc()).limit(limit)
        return list(self.db.scalars(query).all())

    # ===== ENTRY CREATION =====

    def get_or_create_entry(self, store_id: int, ingredient_id: int) -> StoreInventory:
        """Return the ledger entry for the pair, creating a zeroed one if needed."""
        entry = self.get_entry(store_id, ingredient_id)
        if entry is not None:
            return entry

        self.catalog.get_store(store_id)
        ingredient = self.catalog.get_ingredient(ingredient_id)
        try:
            with self.db.begin_nested():
                entry = StoreInventory(
                    store_id=store_id,
                    ingredient_id=ingredient_id,
                    main_qty=ZERO,
                    main_unit=ingredient.unit,
                )
                self.db.add(entry)
        except IntegrityError:
            # Created by a concurrent writer between our read and insert
            entry = self.get_entry(store_id, ingredient_id)
            if entry is None:
                raise
        return entry

    # ===== MAIN WAREHOUSE =====

    def decrement_main_warehouse(
        self,
        store_id: int,
        ingredient_id: int,
        amount: Any,
        reason: MovementReason = MovementReason.TRANSFER_REQUEST,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Decimal:
        """Atomically take ``amount`` from the main warehouse.

        Returns the quantity left. Raises InsufficientStockError, leaving the
        ledger untouched, when less than ``amount`` is on hand.
        """
        amount = _positive(amount)
        result = self.db.execute(
            update(StoreInventory)
            .where(
                StoreInventory.store_id == store_id,
                StoreInventory.ingredient_id == ingredient_id,
                StoreInventory.main_qty >= amount,
            )
            .values(
                main_qty=StoreInventory.main_qty - amount,
                version=StoreInventory.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise self._insufficient(store_id, ingredient_id, amount, self.get_main_warehouse(store_id, ingredient_id))

        self._expire_entry(store_id, ingredient_id)
        qty_after = self.get_main_warehouse(store_id, ingredient_id)
        self._record_movement(
            store_id, ingredient_id, MAIN_BUCKET, -amount, qty_after, reason,
            ref_type=ref_type, ref_id=ref_id, created_by=created_by, notes=notes,
        )
        return qty_after

    def increment_main_warehouse(
        self,
        store_id: int,
        ingredient_id: int,
        amount: Any,
        reason: MovementReason = MovementReason.RECEIVING,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Decimal:
        """Add ``amount`` to the main warehouse (goods received). Returns the new quantity."""
        amount = _positive(amount)
        entry = self.get_or_create_entry(store_id, ingredient_id)
        self.db.execute(
            update(StoreInventory)
            .where(StoreInventory.id == entry.id)
            .values(
                main_qty=StoreInventory.main_qty + amount,
                version=StoreInventory.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.expire(entry)
        qty_after = self.get_main_warehouse(store_id, ingredient_id)
        self._record_movement(
            store_id, ingredient_id, MAIN_BUCKET, amount, qty_after, reason,
            ref_type=ref_type, ref_id=ref_id, created_by=created_by, notes=notes,
        )
        return qty_after

    def set_main_warehouse(
        self,
        store_id: int,
        ingredient_id: int,
        quantity: Any,
        expected_version: Optional[int] = None,
        counted_by: Optional[str] = None,
    ) -> StoreInventory:
        """Overwrite the main-warehouse quantity with a stocktake count."""
        quantity = to_quantity(quantity)
        if quantity < 0:
            raise ValueError("Stock quantity cannot be negative")

        entry = self.get_or_create_entry(store_id, ingredient_id)
        self.db.refresh(entry, with_for_update=True)
        entry.check_version(expected_version)

        delta = quantity - entry.main_qty
        entry.main_qty = quantity
        entry.increment_version()
        self.db.flush()

        if delta != 0:
            self._record_movement(
                store_id, ingredient_id, MAIN_BUCKET, delta, quantity, MovementReason.STOCKTAKE,
                ref_type="stocktake", created_by=counted_by,
            )
        return entry

    def bulk_set_main_warehouse(
        self,
        store_id: int,
        updates: Iterable[Tuple[int, Any]],
        counted_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply several stocktake counts. Unknown ingredients are skipped."""
        self.catalog.get_store(store_id)
        updates = [(ingredient_id, to_quantity(qty)) for ingredient_id, qty in updates]
        known = self.catalog.get_ingredients(ingredient_id for ingredient_id, _ in updates)

        updated = 0
        skipped = []
        for ingredient_id, qty in updates:
            if ingredient_id not in known:
                logger.warning(f"Skipping stocktake for unknown ingredient {ingredient_id} in store {store_id}")
                skipped.append(ingredient_id)
                continue
            self.set_main_warehouse(store_id, ingredient_id, qty, counted_by=counted_by)
            updated += 1
        return {"updated": updated, "skipped": skipped}

    # ===== POSTS =====

    def _get_or_create_post(self, entry: StoreInventory, post: Post) -> PostStock:
        post_stock = self.db.scalar(
            select(PostStock).where(PostStock.inventory_id == entry.id, PostStock.post == post)
        )
        if post_stock is not None:
            return post_stock
        try:
            with self.db.begin_nested():
                post_stock = PostStock(inventory_id=entry.id, post=post, qty=ZERO, unit=entry.main_unit)
                self.db.add(post_stock)
        except IntegrityError:
            post_stock = self.db.scalar(
                select(PostStock).where(PostStock.inventory_id == entry.id, PostStock.post == post)
            )
            if post_stock is None:
                raise
        return post_stock

    def increment_post(
        self,
        store_id: int,
        ingredient_id: int,
        post: Post,
        amount: Any,
        reason: MovementReason = MovementReason.POST_TRANSFER_IN,
        created_by: Optional[str] = None,
    ) -> Decimal:
        amount = _positive(amount)
        entry = self.get_or_create_entry(store_id, ingredient_id)
        post_stock = self._get_or_create_post(entry, post)
        self.db.execute(
            update(PostStock)
            .where(PostStock.id == post_stock.id)
            .values(qty=PostStock.qty + amount)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(post_stock)
        qty_after = self.get_post_quantity(store_id, ingredient_id, post)
        self._record_movement(store_id, ingredient_id, post.value, amount, qty_after, reason, created_by=created_by)
        return qty_after

    def decrement_post(
        self,
        store_id: int,
        ingredient_id: int,
        post: Post,
        amount: Any,
        reason: MovementReason = MovementReason.ADJUSTMENT,
        created_by: Optional[str] = None,
    ) -> Decimal:
        amount = _positive(amount)
        entry = self.get_entry(store_id, ingredient_id)
        result = None
        if entry is not None:
            result = self.db.execute(
                update(PostStock)
                .where(
                    PostStock.inventory_id == entry.id,
                    PostStock.post == post,
                    PostStock.qty >= amount,
                )
                .values(qty=PostStock.qty - amount)
                .execution_options(synchronize_session=False)
            )
        if result is None or result.rowcount != 1:
            raise self._insufficient(
                store_id, ingredient_id, amount, self.get_post_quantity(store_id, ingredient_id, post)
            )

        for post_stock in entry.post_stock:
            if post_stock.post == post:
                self.db.expire(post_stock)
        qty_after = self.get_post_quantity(store_id, ingredient_id, post)
        self._record_movement(store_id, ingredient_id, post.value, -amount, qty_after, reason, created_by=created_by)
        return qty_after

    def transfer_to_post(
        self,
        store_id: int,
        ingredient_id: int,
        post: Post,
        amount: Any,
        moved_by: Optional[str] = None,
    ) -> Dict[str, Decimal]:
        """Move stock from the main warehouse to a post. Both legs share the caller's transaction."""
        main_after = self.decrement_main_warehouse(
            store_id, ingredient_id, amount,
            reason=MovementReason.POST_TRANSFER_OUT,
            ref_type="post",
            created_by=moved_by,
            notes=f"to {post.value}",
        )
        post_after = self.increment_post(store_id, ingredient_id, post, amount, created_by=moved_by)
        return {"main_qty": main_after, "post_qty": post_after}

    # ===== HELPERS =====

    def _insufficient(
        self,
        store_id: int,
        ingredient_id: int,
        required: Decimal,
        available: Decimal,
    ) -> InsufficientStockError:
        ingredients = self.catalog.get_ingredients([ingredient_id])
        ingredient = ingredients.get(ingredient_id)
        return InsufficientStockError(
            store_id=store_id,
            ingredient_id=ingredient_id,
            required=required,
            available=available,
            ingredient_name=ingredient.name if ingredient else "",
            store_name=self.catalog.store_names([store_id]).get(store_id, ""),
            unit=ingredient.unit if ingredient else "",
        )

    def _expire_entry(self, store_id: int, ingredient_id: int) -> None:
        """Expire a cached ledger entry after a bulk UPDATE bypassed the ORM."""
        for obj in list(self.db.identity_map.values()):
            if (
                isinstance(obj, StoreInventory)
                and obj.__dict__.get("store_id") == store_id
                and obj.__dict__.get("ingredient_id") == ingredient_id
            ):
                self.db.expire(obj)

    def _record_movement(
        self,
        store_id: int,
        ingredient_id: int,
        bucket: str,
        qty_delta: Decimal,
        qty_after: Optional[Decimal],
        reason: MovementReason,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        movement = StockMovement(
            store_id=store_id,
            ingredient_id=ingredient_id,
            bucket=bucket,
            qty_delta=qty_delta,
            qty_after=qty_after,
            reason=reason.value,
            ref_type=ref_type,
            ref_id=ref_id,
            created_by=created_by,
            notes=notes,
        )
        self.db.add(movement)
        return movement
