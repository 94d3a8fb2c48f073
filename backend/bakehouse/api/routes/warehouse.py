"""Warehouse stock API routes."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from bakehouse.core.rate_limit import limiter
from bakehouse.core.responses import list_response
from bakehouse.db.session import DbSession
from bakehouse.models.stock import Post
from bakehouse.schemas.stock import (
    BulkStocktakeRequest,
    PostStockResponse,
    PostTransferRequest,
    ReceiveStockRequest,
    StockMovementResponse,
    StocktakeRequest,
    StoreInventoryResponse,
)
from bakehouse.services.availability import AvailabilityCalculator
from bakehouse.services.catalog import CatalogService
from bakehouse.services.stock_ledger import StockLedgerService

router = APIRouter()


# ==================== READS ====================

@router.get("/stock")
@limiter.limit("60/minute")
def get_warehouse_stock(request: Request, db: DbSession, store_id: int = Query(...)):
    """Main-warehouse stock of every active ingredient with value totals."""
    result = StockLedgerService(db).list_store_stock(store_id)
    return list_response(result["items"], grand_total=result["grand_total"])


@router.get("/availability")
@limiter.limit("60/minute")
def get_availability(
    request: Request,
    db: DbSession,
    store_id: int = Query(...),
    ingredient_id: int = Query(...),
):
    """Available-to-promise for one ingredient: on hand minus pending requests."""
    catalog = CatalogService(db)
    catalog.get_store(store_id)
    ingredient = catalog.get_ingredient(ingredient_id)

    calculator = AvailabilityCalculator(db)
    on_hand = calculator.ledger.get_main_warehouse(store_id, ingredient_id)
    reserved = calculator.reserved_quantity(store_id, ingredient_id)
    return {
        "store_id": store_id,
        "ingredient_id": ingredient_id,
        "name": ingredient.name,
        "unit": ingredient.unit,
        "on_hand": float(on_hand),
        "reserved": float(reserved),
        "available": float(calculator.available_to_promise(store_id, ingredient_id)),
    }


@router.get("/availability/all")
@limiter.limit("60/minute")
def get_all_availability(request: Request, db: DbSession, store_id: int = Query(...)):
    """Available-to-promise for every active ingredient of a store."""
    items = AvailabilityCalculator(db).availability_for_store(store_id)
    return list_response([
        {
            **item,
            "on_hand": float(item["on_hand"]),
            "reserved": float(item["reserved"]),
            "available": float(item["available"]),
        }
        for item in items
    ])


@router.get("/posts")
@limiter.limit("60/minute")
def get_post_stock(
    request: Request,
    db: DbSession,
    store_id: int = Query(...),
    ingredient_id: int = Query(...),
):
    """Stock held at each production post for one ingredient."""
    CatalogService(db).get_store(store_id)
    rows = StockLedgerService(db).get_post_stock(store_id, ingredient_id)
    return list_response([PostStockResponse.model_validate(row).model_dump(mode="json") for row in rows])


@router.get("/posts/list")
def list_posts():
    """The fixed set of production posts."""
    return list_response([post.value for post in Post])


@router.get("/movements")
@limiter.limit("60/minute")
def get_movements(
    request: Request,
    db: DbSession,
    store_id: int = Query(...),
    ingredient_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
):
    """Stock movement audit trail, newest first."""
    movements = StockLedgerService(db).list_movements(store_id, ingredient_id=ingredient_id, limit=limit)
    return list_response([StockMovementResponse.model_validate(m).model_dump(mode="json") for m in movements])


# ==================== WRITES ====================

@router.put("/stock", response_model=StoreInventoryResponse)
@limiter.limit("30/minute")
def set_warehouse_stock(request: Request, data: StocktakeRequest, db: DbSession):
    """Overwrite a main-warehouse quantity with a stocktake count."""
    entry = StockLedgerService(db).set_main_warehouse(
        data.store_id,
        data.ingredient_id,
        data.quantity,
        expected_version=data.expected_version,
        counted_by=data.counted_by,
    )
    db.commit()
    db.refresh(entry)
    return entry


@router.post("/bulk-update-stock")
@limiter.limit("30/minute")
def bulk_update_stock(request: Request, data: BulkStocktakeRequest, db: DbSession):
    """Apply several stocktake counts in one transaction."""
    result = StockLedgerService(db).bulk_set_main_warehouse(
        data.store_id,
        [(line.ingredient_id, line.quantity) for line in data.updates],
        counted_by=data.counted_by,
    )
    db.commit()
    return {
        "message": f"Updated {result['updated']} stock entries",
        "updated": result["updated"],
        "skipped": result["skipped"],
    }


@router.post("/receive")
@limiter.limit("30/minute")
def receive_stock(request: Request, data: ReceiveStockRequest, db: DbSession):
    """Book goods received into the main warehouse."""
    qty_after = StockLedgerService(db).increment_main_warehouse(
        data.store_id,
        data.ingredient_id,
        data.quantity,
        ref_type="receiving",
        created_by=data.received_by,
        notes=data.notes,
    )
    db.commit()
    return {
        "store_id": data.store_id,
        "ingredient_id": data.ingredient_id,
        "quantity": float(qty_after),
    }


@router.post("/transfer")
@limiter.limit("30/minute")
def transfer_to_post(request: Request, data: PostTransferRequest, db: DbSession):
    """Move stock from the main warehouse to a production post."""
    result = StockLedgerService(db).transfer_to_post(
        data.store_id,
        data.ingredient_id,
        data.post,
        data.quantity,
        moved_by=data.moved_by,
    )
    db.commit()
    return {
        "message": "Stock transferred successfully",
        "store_id": data.store_id,
        "ingredient_id": data.ingredient_id,
        "post": data.post.value,
        "main_qty": float(result["main_qty"]),
        "post_qty": float(result["post_qty"]),
    }
