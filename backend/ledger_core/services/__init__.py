# backend/ledger_core/services/__init__.py
"""
Service layer for business logic.

Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions
- Receive database sessions and the acting user as parameters
- Take commit=False when composed into a larger unit of work

Usage:
    from ledger_core.services import TransactionService, PositionService
    from ledger_core.services import VaultService, BackfillService
    from ledger_core.services import ValidationError, DomainInvariantError

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and limits
    ├── transactions/                # Ledger write path
    │   ├── derived.py               # Sign conventions and derived amounts (pure)
    │   └── service.py               # FX snapshot, persistence, position routing
    ├── positions/                   # Cost-basis engine
    │   ├── calculator.py            # Weighted-average lot arithmetic (pure)
    │   └── service.py               # Lot lookup, close, delete
    ├── vaults/                      # Share-priced vaults
    │   ├── pricing.py               # Share price and manual pricing (pure)
    │   ├── shares.py                # Holder mint/burn bookkeeping (pure)
    │   ├── models.py                # Tokenized / simple-position variants
    │   ├── types.py                 # Inputs and results
    │   └── service.py               # Vault operations and ledger
    ├── pricing/                     # Price sources and cache
    │   ├── base.py                  # Abstract price source (tenacity retries)
    │   ├── http_source.py           # Configurable JSON HTTP source
    │   ├── yahoo_source.py          # Yahoo Finance source
    │   ├── registry.py              # Provider → source lookup
    │   ├── cache.py                 # asset_prices upserts and lookups
    │   └── quotes.py                # Daily/latest quotes with fallback
    ├── backfill/                    # Historical price population
    │   ├── service.py               # Mappings, jobs, day-by-day execution
    │   └── worker.py                # Background worker pool
    ├── actions/                     # Predefined actions
    │   ├── configs.py               # Typed action configs
    │   └── service.py               # Expansion into transactions
    └── reporting/                   # Read-only reports
        └── service.py
"""

from ledger_core.services.actions import ActionResult, ActionService
from ledger_core.services.backfill import BackfillService, BackfillWorkerPool
from ledger_core.services.exceptions import (
    ServiceError,
    ValidationError,
    DomainInvariantError,
    InsufficientQuantityError,
    InsufficientSharesError,
    PricingModeError,
    NegativePriceError,
    VaultStateError,
    JobStateError,
    NotFoundError,
    MarketDataError,
    PriceNotAvailableError,
    QuoteNotFoundError,
)
from ledger_core.services.positions import PositionService, PositionSummary
from ledger_core.services.pricing import PriceCache, QuoteService
from ledger_core.services.reporting import ReportingService
from ledger_core.services.transactions import TransactionInput, TransactionService
from ledger_core.services.vaults import VaultInput, VaultService

__all__ = [
    # Services
    "TransactionService",
    "TransactionInput",
    "PositionService",
    "PositionSummary",
    "VaultService",
    "VaultInput",
    "PriceCache",
    "QuoteService",
    "BackfillService",
    "BackfillWorkerPool",
    "ActionService",
    "ActionResult",
    "ReportingService",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "DomainInvariantError",
    "InsufficientQuantityError",
    "InsufficientSharesError",
    "PricingModeError",
    "NegativePriceError",
    "VaultStateError",
    "JobStateError",
    "NotFoundError",
    "MarketDataError",
    "PriceNotAvailableError",
    "QuoteNotFoundError",
]
