"""Transfer request models."""

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
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakehouse.db.base import Base, TimestampMixin
from bakehouse.db.types import Quantity


class TransferStatus(str, Enum):
    """Status of a transfer request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"

    def can_transition_to(self, target: "TransferStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


# Only pending requests can reach a stock-affecting state.
ALLOWED_TRANSITIONS = {
    TransferStatus.PENDING: frozenset({TransferStatus.APPROVED, TransferStatus.REJECTED}),
    TransferStatus.APPROVED: frozenset({TransferStatus.COMPLETED}),
    TransferStatus.REJECTED: frozenset(),
    TransferStatus.COMPLETED: frozenset(),
}


class TransferRequest(Base, TimestampMixin):
    """A request to draw ingredients from a store's main warehouse."""

    __tablename__ = "transfer_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[TransferStatus] = mapped_column(
        SQLEnum(TransferStatus), default=TransferStatus.PENDING, nullable=False, index=True
    )
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    store: Mapped["Store"] = relationship("Store", back_populates="transfer_requests")
    items: Mapped[list["TransferRequestItem"]] = relationship(
        "TransferRequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="TransferRequestItem.id",
        lazy="selectin",
    )


class TransferRequestItem(Base):
    """A single ingredient line of a transfer request. Immutable once created."""

    __tablename__ = "transfer_request_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_request_items_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("transfer_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ingredient_id: Mapped[int] = mapped_column(
        ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity(), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    # Relationships
    request: Mapped["TransferRequest"] = relationship("TransferRequest", back_populates="items")


# Forward references
from bakehouse.models.store import Store
