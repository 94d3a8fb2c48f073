"""Pytest configuration and fixtures."""

import os

# Point the app at a throwaway database before bakehouse reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from decimal import Decimal
from typing import Callable, Generator, List

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bakehouse.core.config import settings
from bakehouse.db.base import Base
from bakehouse.db.session import build_engine, get_db
from bakehouse.main import app
# Import all models to ensure they're registered with Base.metadata
from bakehouse.models import *
from bakehouse.services.stock_ledger import StockLedgerService
from bakehouse.services.transfer_requests import TransferRequestService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No back-off sleeps between approval retries in tests."""
    monkeypatch.setattr(settings, "approval_retry_backoff_ms", 0)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """File-backed SQLite engine so several connections can race on one database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(file_engine) -> Callable[[], Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiter during tests to avoid flaky failures
    from bakehouse.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_store(db: Session, name: str, managers: List[str]) -> Store:
    store = Store(name=name, address="1 Mill Street", warehouse_managers=managers)
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


def _make_ingredient(db: Session, name: str, unit: str, price: str) -> Ingredient:
    ingredient = Ingredient(name=name, unit=unit, price=Decimal(price), active=True)
    db.add(ingredient)
    db.commit()
    db.refresh(ingredient)
    return ingredient


@pytest.fixture
def test_store(db_session: Session) -> Store:
    """A store whose warehouse manager is 'maria'."""
    return _make_store(db_session, "Central Bakery", ["maria"])


@pytest.fixture
def other_store(db_session: Session) -> Store:
    return _make_store(db_session, "Harbour Cafe", ["tom"])


@pytest.fixture
def flour(db_session: Session) -> Ingredient:
    return _make_ingredient(db_session, "Flour", "bag", "18.50")


@pytest.fixture
def butter(db_session: Session) -> Ingredient:
    return _make_ingredient(db_session, "Butter", "box", "64.00")


@pytest.fixture
def sugar(db_session: Session) -> Ingredient:
    return _make_ingredient(db_session, "Sugar", "bag", "22.00")


@pytest.fixture
def set_stock(db_session: Session) -> Callable:
    """Set a main-warehouse quantity as a committed stocktake."""
    def _set(store_id: int, ingredient_id: int, qty) -> None:
        StockLedgerService(db_session).set_main_warehouse(
            store_id, ingredient_id, Decimal(str(qty)), counted_by="test"
        )
        db_session.commit()

    return _set


@pytest.fixture
def make_request(db_session: Session) -> Callable:
    """Create and commit a pending request from [(ingredient_id, qty), ...]."""
    def _make(store_id: int, lines, requested_by: str = "baker") -> TransferRequest:
        request = TransferRequestService(db_session).create(
            store_id,
            [{"ingredient_id": ingredient_id, "quantity": Decimal(str(qty))} for ingredient_id, qty in lines],
            requested_by=requested_by,
        )
        db_session.commit()
        return request

    return _make
