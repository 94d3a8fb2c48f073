"""SQLAlchemy models."""

from bakehouse.models.store import Store
from bakehouse.models.ingredient import Ingredient
from bakehouse.models.stock import (
    MAIN_BUCKET,
    MovementReason,
    Post,
    PostStock,
    StockMovement,
    StoreInventory,
)
from bakehouse.models.transfer_request import (
    ALLOWED_TRANSITIONS,
    TransferRequest,
    TransferRequestItem,
    TransferStatus,
)

__all__ = [
    "Store",
    "Ingredient",
    "MAIN_BUCKET",
    "MovementReason",
    "Post",
    "PostStock",
    "StockMovement",
    "StoreInventory",
    "ALLOWED_TRANSITIONS",
    "TransferRequest",
    "TransferRequestItem",
    "TransferStatus",
]
