"""Transfer request API routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Request

from bakehouse.core.rate_limit import limiter
from bakehouse.core.responses import list_response
from bakehouse.db.session import DbSession
from bakehouse.models.transfer_request import TransferStatus
from bakehouse.schemas.transfer_request import (
    ApproveRequest,
    BulkApproveRequest,
    BulkApproveResponse,
    MobileApproveRequest,
    RejectRequest,
    StatusUpdateRequest,
    TransferRequestCreate,
    TransferRequestResponse,
)
from bakehouse.services.approval import ApprovalEngine
from bakehouse.services.transfer_requests import TransferRequestService

router = APIRouter()


def _serialize(requests) -> list:
    return [TransferRequestResponse.model_validate(r).model_dump(mode="json") for r in requests]


@router.post("", response_model=TransferRequestResponse, status_code=201)
@limiter.limit("30/minute")
def create_transfer_request(request: Request, data: TransferRequestCreate, db: DbSession):
    """Record a store's request for ingredients. Stock is not touched."""
    transfer_request = TransferRequestService(db).create(
        data.store_id,
        [item.model_dump() for item in data.items],
        requested_by=data.requested_by,
        notes=data.notes,
    )
    db.commit()
    db.refresh(transfer_request)
    return transfer_request


@router.get("")
@limiter.limit("60/minute")
def list_transfer_requests(
    request: Request,
    db: DbSession,
    store_id: int = Query(...),
    status: Optional[TransferStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = Query(None, ge=1, le=1000),
):
    """Requests of one store, newest first."""
    requests = TransferRequestService(db).list_by_store(
        store_id, status=status, start_date=start_date, end_date=end_date, limit=limit
    )
    return list_response(_serialize(requests))


@router.get("/all")
@limiter.limit("60/minute")
def list_all_transfer_requests(
    request: Request,
    db: DbSession,
    status: Optional[TransferStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = Query(None, ge=1, le=1000),
):
    """Requests across all stores for the approval screen."""
    requests = TransferRequestService(db).list_all(
        status=status, start_date=start_date, end_date=end_date, limit=limit
    )
    return list_response(_serialize(requests))


@router.post("/bulk-approve", response_model=BulkApproveResponse)
@limiter.limit("30/minute")
def bulk_approve_transfer_requests(request: Request, data: BulkApproveRequest, db: DbSession):
    """Approve several pending requests in one all-or-nothing transaction."""
    result = ApprovalEngine(db).bulk_approve(data.request_ids, approved_by=data.approved_by)
    return BulkApproveResponse(
        approved_count=result["approved_count"],
        request_ids=result["request_ids"],
        message=f"Approved {result['approved_count']} transfer requests",
    )


@router.get("/{request_id}", response_model=TransferRequestResponse)
@limiter.limit("60/minute")
def get_transfer_request(request: Request, request_id: int, db: DbSession):
    return TransferRequestService(db).get(request_id)


@router.post("/{request_id}/approve", response_model=TransferRequestResponse)
@limiter.limit("30/minute")
def approve_transfer_request(
    request: Request,
    request_id: int,
    db: DbSession,
    data: Optional[ApproveRequest] = None,
):
    """Approve a pending request and deduct its items from the main warehouse."""
    approved_by = data.approved_by if data else None
    return ApprovalEngine(db).approve(request_id, approved_by=approved_by)


@router.post("/{request_id}/reject", response_model=TransferRequestResponse)
@limiter.limit("30/minute")
def reject_transfer_request(
    request: Request,
    request_id: int,
    db: DbSession,
    data: Optional[RejectRequest] = None,
):
    rejected_by = data.rejected_by if data else None
    return ApprovalEngine(db).reject(request_id, rejected_by=rejected_by)


@router.post("/{request_id}/complete", response_model=TransferRequestResponse)
@limiter.limit("30/minute")
def complete_transfer_request(request: Request, request_id: int, db: DbSession):
    """Mark an approved request as delivered to the store."""
    return ApprovalEngine(db).complete(request_id)


@router.patch("/{request_id}/status", response_model=TransferRequestResponse)
@limiter.limit("30/minute")
def update_transfer_request_status(
    request: Request,
    request_id: int,
    data: StatusUpdateRequest,
    db: DbSession,
):
    """Change the status; approving through here deducts stock like /approve."""
    return ApprovalEngine(db).update_status(request_id, data.status, actor=data.actor)


@router.post("/{request_id}/mobile-approve", response_model=TransferRequestResponse)
@limiter.limit("30/minute")
def mobile_approve_transfer_request(
    request: Request,
    request_id: int,
    data: MobileApproveRequest,
    db: DbSession,
):
    """Approve from the mobile app as one of the store's warehouse managers."""
    return ApprovalEngine(db).approve_as_manager(request_id, data.user_name)
