"""Store model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakehouse.db.base import Base, TimestampMixin


class Store(Base, TimestampMixin):
    """A bakery store owning its own main warehouse."""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    # User names allowed to approve this store's requests from the mobile app
    warehouse_managers: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Relationships (the database refuses to delete a store that has history)
    inventory: Mapped[list["StoreInventory"]] = relationship(
        "StoreInventory", back_populates="store", passive_deletes="all"
    )
    transfer_requests: Mapped[list["TransferRequest"]] = relationship(
        "TransferRequest", back_populates="store", passive_deletes="all"
    )

    def is_warehouse_manager(self, user_name: str) -> bool:
        return bool(user_name) and user_name in (self.warehouse_managers or [])


# Forward references
from bakehouse.models.stock import StoreInventory
from bakehouse.models.transfer_request import TransferRequest
