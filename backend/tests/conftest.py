# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock price source fixtures
- Sample data factories
- API client with database and backfill overrides
"""

import os

# Settings are read at import time; configure before importing ledger_core
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BACKFILL_REQUEST_DELAY_SECONDS", "0")

from datetime import date
from decimal import Decimal
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_core.database import get_db
from ledger_core.dependencies import get_backfill_pool, get_backfill_service
from ledger_core.main import app
from ledger_core.models import (
    Account,
    AccountType,
    Asset,
    AssetPriceMapping,
    Base,
    PriceProvider,
    Vault,
)
from ledger_core.services.backfill import BackfillService
from ledger_core.services.exceptions import PriceNotAvailableError, TickerNotFoundError
from ledger_core.services.pricing import (
    DailyPrice,
    PriceCache,
    PriceRequest,
    PriceSource,
    PriceSourceRegistry,
)
from ledger_core.services.vaults import VaultInput, VaultService

ACTOR_HEADERS = {"X-Actor": "alice"}


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Session factory bound to the test engine (for worker pools)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Iterator[Session]:
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# MOCK PRICE SOURCE
# =============================================================================

class MockPriceSource(PriceSource):
    """
    Mock implementation of PriceSource for testing.

    Prices are configured per (symbol, currency, date); errors can be
    configured per day. Unconfigured days raise PriceNotAvailableError.
    """

    def __init__(self, name: str = "mock"):
        self._name = name
        self._prices: dict[tuple[str, str, date], Decimal] = {}
        self._errors: dict[date, Exception] = {}
        self._unknown_symbols: set[str] = set()
        self.calls: list[PriceRequest] = []

    @property
    def name(self) -> str:
        return self._name

    def set_price(self, symbol: str, currency: str, day: date, price: Decimal | str) -> None:
        """Configure a price for one day."""
        self._prices[(symbol.upper(), currency.upper(), day)] = Decimal(str(price))

    def set_error(self, day: date, error: Exception) -> None:
        """Configure an error raised when the given day is requested."""
        self._errors[day] = error

    def set_unknown_symbol(self, symbol: str) -> None:
        self._unknown_symbols.add(symbol.upper())

    def get_daily_price(self, request: PriceRequest) -> DailyPrice:
        self.calls.append(request)

        if request.symbol in self._unknown_symbols:
            raise TickerNotFoundError(request.symbol, self.name)
        if request.date in self._errors:
            raise self._errors[request.date]

        price = self._prices.get((request.symbol, request.currency, request.date))
        if price is None:
            raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)

        return DailyPrice(
            symbol=request.symbol,
            currency=request.currency,
            date=request.date,
            price=price,
            source=self.name,
        )


@pytest.fixture
def mock_source() -> MockPriceSource:
    """Create a fresh mock price source for each test."""
    return MockPriceSource()


class RecordingPool:
    """
    Stands in for BackfillWorkerPool where only submissions matter.

    Nothing runs in the background, so API tests never share the SQLite
    connection with a worker thread.
    """

    def __init__(self):
        self.submitted: list[tuple[int, bool]] = []
        self.cancelled: list[int] = []
        self.closed = False

    def submit(self, job_id: int, resume: bool = False):
        self.submitted.append((job_id, resume))

    def cancel(self, job_id: int) -> bool:
        self.cancelled.append(job_id)
        return False

    def active_jobs(self) -> list[int]:
        return []


@pytest.fixture
def recording_pool() -> RecordingPool:
    return RecordingPool()


# =============================================================================
# API CLIENT
# =============================================================================

@pytest.fixture
def client(db: Session, mock_source: MockPriceSource, recording_pool: RecordingPool) -> Iterator[TestClient]:
    """TestClient with the database session and backfill collaborators overridden."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    registry = PriceSourceRegistry({
        PriceProvider.YAHOO: mock_source,
        PriceProvider.HTTP: mock_source,
    })
    backfill_service = BackfillService(registry=registry, request_delay=0)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_backfill_service] = lambda: backfill_service
    app.dependency_overrides[get_backfill_pool] = lambda: recording_pool

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_account(
        db: Session,
        name: str = "Wallet",
        account_type: AccountType = AccountType.CASH,
        currency: str | None = "USD",
) -> Account:
    """Factory function for creating Account entities in the database."""
    account = Account(name=name, type=account_type, currency=currency)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def create_asset(db: Session, symbol: str = "BTC", name: str | None = "Bitcoin") -> Asset:
    """Factory function for creating Asset entities in the database."""
    asset = Asset(symbol=symbol, name=name)
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def create_mapping(
        db: Session,
        asset: Asset,
        provider: PriceProvider = PriceProvider.YAHOO,
        provider_id: str = "BTC-USD",
        quote_currency: str = "USD",
        **kwargs,
) -> AssetPriceMapping:
    """Factory function for creating AssetPriceMapping entities in the database."""
    mapping = AssetPriceMapping(
        asset_id=asset.id,
        provider=provider,
        provider_id=provider_id,
        quote_currency=quote_currency,
        **kwargs,
    )
    db.add(mapping)
    db.commit()
    db.refresh(mapping)
    return mapping


def create_vault(db: Session, name: str = "Growth Fund", actor: str = "alice", **kwargs) -> Vault:
    """Factory function creating a vault through VaultService."""
    return VaultService().create_vault(db, VaultInput(name=name, **kwargs), actor=actor)


def assert_decimal(actual, expected, places: int = 8) -> None:
    """
    Compare decimals to a number of places.

    SQLite stores Numeric columns as floats, so values read back after a
    commit carry binary noise in the last digits.
    """
    tolerance = Decimal(1).scaleb(-places)
    assert abs(Decimal(str(actual)) - Decimal(str(expected))) < tolerance, f"{actual} != {expected}"


def cache_price(
        db: Session,
        symbol: str,
        currency: str,
        day: date,
        price: Decimal | str,
        source: str = "test",
) -> None:
    """Write one row into the price cache and commit."""
    PriceCache().put(db, DailyPrice(symbol=symbol, currency=currency, date=day, price=Decimal(str(price)), source=source))
    db.commit()


# =============================================================================
# FIXTURE EXPORTS (for convenience imports in tests)
# =============================================================================

@pytest.fixture
def btc_asset(db: Session) -> Asset:
    """Provide a BTC asset for tests."""
    return create_asset(db)


@pytest.fixture
def vault(db: Session) -> Vault:
    """Provide an active tokenized vault at price 1."""
    return create_vault(db)
