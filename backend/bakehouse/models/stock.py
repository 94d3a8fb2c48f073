"""Stock models: StoreInventory (main warehouse), PostStock and StockMovement."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakehouse.db.base import Base, TimestampMixin, VersionMixin
from bakehouse.db.types import Quantity

MAIN_BUCKET = "main"


class Post(str, Enum):
    """Production stations holding their own stock bucket."""

    MIXING = "mixing"
    LAMINATING = "laminating"
    SHAPING = "shaping"
    OVEN = "oven"
    COLD_PREP = "cold_prep"
    PACKING = "packing"
    BEVERAGE = "beverage"
    FILLING = "filling"
    SMALL_STORE = "small_store"
    RECEIVING = "receiving"


class MovementReason(str, Enum):
    """Reasons for stock movements."""

    RECEIVING = "receiving"  # Goods received into the main warehouse
    STOCKTAKE = "stocktake"  # Counted quantity overwrites the ledger
    TRANSFER_REQUEST = "transfer_request"  # Approved transfer request
    POST_TRANSFER_OUT = "post_transfer_out"  # Main warehouse -> post
    POST_TRANSFER_IN = "post_transfer_in"  # Received at post from main warehouse
    ADJUSTMENT = "adjustment"  # Manual correction


class StoreInventory(Base, TimestampMixin, VersionMixin):
    """Stock ledger entry for one ingredient in one store."""

    __tablename__ = "store_inventory"
    __table_args__ = (
        UniqueConstraint("store_id", "ingredient_id", name="uq_store_inventory_store_ingredient"),
        CheckConstraint("main_qty >= 0", name="ck_store_inventory_main_qty_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    ingredient_id: Mapped[int] = mapped_column(
        ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    main_qty: Mapped[Decimal] = mapped_column(Quantity(), default=0, nullable=False)
    main_unit: Mapped[str] = mapped_column(String(20), default="", nullable=False)

    # Relationships
    store: Mapped["Store"] = relationship("Store", back_populates="inventory")
    ingredient: Mapped["Ingredient"] = relationship("Ingredient", back_populates="inventory")
    post_stock: Mapped[list["PostStock"]] = relationship(
        "PostStock", back_populates="inventory", cascade="all, delete-orphan"
    )


class PostStock(Base):
    """Stock held at a production post for one ledger entry."""

    __tablename__ = "post_stock"
    __table_args__ = (
        UniqueConstraint("inventory_id", "post", name="uq_post_stock_inventory_post"),
        CheckConstraint("qty >= 0", name="ck_post_stock_qty_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    inventory_id: Mapped[int] = mapped_column(
        ForeignKey("store_inventory.id", ondelete="CASCADE"), nullable=False, index=True
    )
    post: Mapped[Post] = mapped_column(SQLEnum(Post), nullable=False)
    qty: Mapped[Decimal] = mapped_column(Quantity(), default=0, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    inventory: Mapped["StoreInventory"] = relationship("StoreInventory", back_populates="post_stock")


class StockMovement(Base):
    """Ledger of all stock changes (audit trail)."""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    ingredient_id: Mapped[int] = mapped_column(
        ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    bucket: Mapped[str] = mapped_column(String(30), default=MAIN_BUCKET, nullable=False)  # main or a post
    qty_delta: Mapped[Decimal] = mapped_column(Quantity(), nullable=False)
    qty_after: Mapped[Optional[Decimal]] = mapped_column(Quantity(), nullable=True)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    ref_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # transfer_request, stocktake
    ref_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


# Forward references
from bakehouse.models.store import Store
from bakehouse.models.ingredient import Ingredient
