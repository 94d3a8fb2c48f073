"""API routes."""

from fastapi import APIRouter

from bakehouse.api.routes import transfer_requests, warehouse

api_router = APIRouter()

api_router.include_router(warehouse.router, prefix="/warehouse", tags=["warehouse"])
api_router.include_router(
    transfer_requests.router, prefix="/transfer-requests", tags=["transfer-requests"]
)
