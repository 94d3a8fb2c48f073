"""Ingredient model."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakehouse.db.base import Base, TimestampMixin


class Ingredient(Base, TimestampMixin):
    """Raw material in the catalog."""

    __tablename__ = "ingredients"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)  # purchase unit: bag, kg, box
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)  # per purchase unit
    specs: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # e.g. "12 x 1kg / box"
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    inventory: Mapped[list["StoreInventory"]] = relationship(
        "StoreInventory", back_populates="ingredient", passive_deletes="all"
    )


# Forward references
from bakehouse.models.stock import StoreInventory
