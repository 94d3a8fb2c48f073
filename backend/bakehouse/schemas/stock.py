"""Stock schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from bakehouse.db.types import QUANTITY_PLACES
from bakehouse.models.stock import Post


class StoreInventoryResponse(BaseModel):
    """Stock ledger entry response schema."""

    id: int
    store_id: int
    ingredient_id: int
    main_qty: float
    main_unit: str
    version: int
    updated_at: datetime

    model_config = {"from_attributes": True}


class PostStockResponse(BaseModel):
    """Post bucket response schema."""

    post: Post
    qty: float
    unit: str
    last_updated: datetime

    model_config = {"from_attributes": True}


class StockMovementResponse(BaseModel):
    """Stock movement response schema."""

    id: int
    ts: datetime
    store_id: int
    ingredient_id: int
    bucket: str
    qty_delta: float
    qty_after: Optional[float] = None
    reason: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None

    model_config = {"from_attributes": True}


class StocktakeRequest(BaseModel):
    """Overwrite the main-warehouse quantity with a counted value."""

    store_id: int
    ingredient_id: int
    quantity: Decimal = Field(ge=0, decimal_places=QUANTITY_PLACES)
    expected_version: Optional[int] = None
    counted_by: Optional[str] = None


class StocktakeLine(BaseModel):
    ingredient_id: int
    quantity: Decimal = Field(ge=0, decimal_places=QUANTITY_PLACES)


class BulkStocktakeRequest(BaseModel):
    store_id: int
    updates: List[StocktakeLine] = Field(min_length=1)
    counted_by: Optional[str] = None


class ReceiveStockRequest(BaseModel):
    """Goods received into the main warehouse."""

    store_id: int
    ingredient_id: int
    quantity: Decimal = Field(gt=0, decimal_places=QUANTITY_PLACES)
    received_by: Optional[str] = None
    notes: Optional[str] = None


class PostTransferRequest(BaseModel):
    """Move stock from the main warehouse to a production post."""

    store_id: int
    ingredient_id: int
    post: Post
    quantity: Decimal = Field(gt=0, decimal_places=QUANTITY_PLACES)
    moved_by: Optional[str] = None
