# backend/ledger_core/dependencies.py
"""
Dependency injection for FastAPI routers.

Services are lazily created singletons shared across requests. The
backfill worker pool is created once and shut down by the app lifespan.

The acting user is an explicit X-Actor header threaded into every
mutating service call; there is no ambient actor.

Usage in routers:
    @router.post("/vaults")
    def create_vault(
        service: VaultService = Depends(get_vault_service),
        actor: str = Depends(get_actor),
    ):
        ...
"""

import logging
from functools import lru_cache

from fastapi import Header

from ledger_core.config import settings
from ledger_core.database import SessionLocal
from ledger_core.services.actions import ActionService
from ledger_core.services.backfill import BackfillService, BackfillWorkerPool
from ledger_core.services.exceptions import ValidationError
from ledger_core.services.positions import PositionService
from ledger_core.services.pricing import PriceCache, QuoteService
from ledger_core.services.reporting import ReportingService
from ledger_core.services.transactions import TransactionService
from ledger_core.services.vaults import VaultService
from ledger_core.utils.context import set_request_context

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor"


# =============================================================================
# SINGLETON SERVICE INSTANCES
# =============================================================================
# Order matters: quotes and positions before the services built on them.

@lru_cache(maxsize=1)
def get_price_cache() -> PriceCache:
    return PriceCache()


@lru_cache(maxsize=1)
def get_quote_service() -> QuoteService:
    logger.debug("Initializing singleton QuoteService")
    return QuoteService(cache=get_price_cache(), fallback_days=settings.fx_fallback_days)


@lru_cache(maxsize=1)
def get_position_service() -> PositionService:
    return PositionService()


@lru_cache(maxsize=1)
def get_transaction_service() -> TransactionService:
    logger.debug("Initializing singleton TransactionService")
    return TransactionService(quotes=get_quote_service(), positions=get_position_service())


@lru_cache(maxsize=1)
def get_action_service() -> ActionService:
    return ActionService(
        transactions=get_transaction_service(),
        positions=get_position_service(),
        quotes=get_quote_service(),
    )


@lru_cache(maxsize=1)
def get_vault_service() -> VaultService:
    return VaultService()


@lru_cache(maxsize=1)
def get_reporting_service() -> ReportingService:
    return ReportingService()


@lru_cache(maxsize=1)
def get_backfill_service() -> BackfillService:
    logger.debug("Initializing singleton BackfillService")
    return BackfillService(cache=get_price_cache())


@lru_cache(maxsize=1)
def get_backfill_pool() -> BackfillWorkerPool:
    """
    Shared worker pool. Jobs run with their own sessions from SessionLocal,
    never with the request session.
    """
    logger.info(f"Starting backfill worker pool ({settings.backfill_max_workers} workers)")
    return BackfillWorkerPool(SessionLocal, get_backfill_service())


# =============================================================================
# ACTOR
# =============================================================================

def get_actor(x_actor: str | None = Header(default=None, alias=ACTOR_HEADER)) -> str:
    """
    Acting user for the request, from the X-Actor header.

    Raises:
        ValidationError: Header missing or blank (mapped to 400)
    """
    actor = (x_actor or "").strip()
    if not actor:
        raise ValidationError(f"{ACTOR_HEADER} header is required", field="actor")
    set_request_context("actor", actor)
    return actor
