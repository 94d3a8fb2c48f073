"""Seed demo data for the bakehouse warehouse API.

Creates a few stores, a small ingredient catalog, opening main-warehouse
stock booked as goods received, and one pending transfer request per store,
so the approval screens have something to show.

Usage:
    cd backend
    python seed_test_data.py
"""

import sys
import os
from decimal import Decimal

# Ensure the backend package is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy import select

from bakehouse.db.session import SessionLocal, engine
from bakehouse.db.base import Base
from bakehouse.models import Ingredient, Store
from bakehouse.services.stock_ledger import StockLedgerService
from bakehouse.services.transfer_requests import TransferRequestService

STORES = [
    {"name": "Central Bakery", "address": "1 Mill Street", "warehouse_managers": ["maria", "admin"]},
    {"name": "Harbour Cafe", "address": "12 Quay Road", "warehouse_managers": ["tom"]},
    {"name": "Station Kiosk", "address": "Platform 2", "warehouse_managers": []},
]

INGREDIENTS = [
    {"name": "Flour T55", "unit": "bag", "price": Decimal("18.50"), "specs": "25kg / bag"},
    {"name": "Butter", "unit": "box", "price": Decimal("64.00"), "specs": "10 x 1kg / box"},
    {"name": "Sugar", "unit": "bag", "price": Decimal("22.00"), "specs": "25kg / bag"},
    {"name": "Eggs", "unit": "tray", "price": Decimal("7.20"), "specs": "30 pcs / tray"},
    {"name": "Yeast", "unit": "pack", "price": Decimal("3.10"), "specs": "500g / pack"},
    {"name": "Dark Chocolate", "unit": "box", "price": Decimal("95.00"), "specs": "5kg / box"},
]

OPENING_STOCK = {
    "Flour T55": Decimal("40"),
    "Butter": Decimal("12"),
    "Sugar": Decimal("15"),
    "Eggs": Decimal("30"),
    "Yeast": Decimal("50"),
    "Dark Chocolate": Decimal("4"),
}


def seed():
    """Insert demo data, skipping anything that already exists."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        _seed_all(db)
        db.commit()
        print("Seed data committed successfully.")
    except Exception as e:
        db.rollback()
        print(f"Error seeding data: {e}")
        raise
    finally:
        db.close()


def _seed_all(db):
    stores = []
    for data in STORES:
        store = db.scalar(select(Store).where(Store.name == data["name"]))
        if store is None:
            store = Store(**data)
            db.add(store)
        stores.append(store)
    db.flush()
    print(f"  + Stores ({len(stores)})")

    ingredients = {}
    for data in INGREDIENTS:
        ingredient = db.scalar(select(Ingredient).where(Ingredient.name == data["name"]))
        if ingredient is None:
            ingredient = Ingredient(**data)
            db.add(ingredient)
        ingredients[data["name"]] = ingredient
    db.flush()
    print(f"  + Ingredients ({len(ingredients)})")

    ledger = StockLedgerService(db)
    for store in stores:
        for name, qty in OPENING_STOCK.items():
            ingredient = ingredients[name]
            if ledger.get_entry(store.id, ingredient.id) is not None:
                continue
            ledger.increment_main_warehouse(
                store.id, ingredient.id, qty, ref_type="opening_stock", created_by="seed"
            )
    print("  + Opening stock")

    requests = TransferRequestService(db)
    for store in stores:
        if requests.list_by_store(store.id, limit=1):
            continue
        requests.create(
            store.id,
            [
                {"ingredient_id": ingredients["Flour T55"].id, "quantity": Decimal("5")},
                {"ingredient_id": ingredients["Butter"].id, "quantity": Decimal("2")},
            ],
            requested_by="seed",
            notes="Weekend production",
        )
    print("  + Transfer requests")


if __name__ == "__main__":
    seed()
