"""Transfer request schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from bakehouse.db.types import QUANTITY_PLACES
from bakehouse.models.transfer_request import TransferStatus


class TransferRequestItemCreate(BaseModel):
    """A requested ingredient line. Name and unit default from the catalog."""

    ingredient_id: int
    quantity: Decimal = Field(gt=0, decimal_places=QUANTITY_PLACES)
    name: Optional[str] = Field(default=None, max_length=255)
    unit: Optional[str] = Field(default=None, max_length=20)


class TransferRequestCreate(BaseModel):
    store_id: int
    items: List[TransferRequestItemCreate] = Field(min_length=1)
    requested_by: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class TransferRequestItemResponse(BaseModel):
    ingredient_id: int
    name: str
    quantity: float
    unit: str

    model_config = {"from_attributes": True}


class TransferRequestResponse(BaseModel):
    """Transfer request response schema."""

    id: int
    store_id: int
    status: TransferStatus
    requested_by: str
    notes: Optional[str] = None
    items: List[TransferRequestItemResponse]
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ApproveRequest(BaseModel):
    approved_by: Optional[str] = Field(default=None, max_length=100)


class RejectRequest(BaseModel):
    rejected_by: Optional[str] = Field(default=None, max_length=100)


class MobileApproveRequest(BaseModel):
    user_name: str = Field(min_length=1, max_length=100)


class StatusUpdateRequest(BaseModel):
    status: TransferStatus
    actor: Optional[str] = Field(default=None, max_length=100)


class BulkApproveRequest(BaseModel):
    request_ids: List[int] = Field(min_length=1)
    approved_by: Optional[str] = Field(default=None, max_length=100)


class BulkApproveResponse(BaseModel):
    approved_count: int
    request_ids: List[int]
    message: str
