# backend/ledger_core/routers/prices.py
"""
Price mapping, backfill and quote endpoints.

Backfill jobs run on the background worker pool; POST returns the
pending job immediately and GET /prices/backfill/{id} reports progress.
Quotes are read from the price cache only.
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ledger_core.database import get_db
from ledger_core.dependencies import (
    get_actor,
    get_backfill_pool,
    get_backfill_service,
    get_quote_service,
)
from ledger_core.middleware.rate_limit import limiter, RATE_LIMIT_BACKFILL
from ledger_core.models import AssetPriceMapping, PopulationStatus, PricePopulationJob
from ledger_core.schemas.prices import (
    BackfillCreate,
    BackfillJobResponse,
    PriceMappingCreate,
    PriceMappingCreated,
    PriceMappingResponse,
    QuoteResponse,
)
from ledger_core.services.backfill import BackfillService, BackfillWorkerPool, MappingInput
from ledger_core.services.constants import MAX_LIST_LIMIT
from ledger_core.services.pricing import Quote, QuoteService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/prices",
    tags=["Prices"],
)

BackfillDep = Annotated[BackfillService, Depends(get_backfill_service)]
PoolDep = Annotated[BackfillWorkerPool, Depends(get_backfill_pool)]


# =============================================================================
# MAPPINGS
# =============================================================================

@router.post(
    "/mappings",
    response_model=PriceMappingCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Map an asset to a price provider",
)
@limiter.limit(RATE_LIMIT_BACKFILL)
def create_mapping(
        request: Request,
        payload: PriceMappingCreate,
        db: Annotated[Session, Depends(get_db)],
        service: BackfillDep,
        pool: PoolDep,
        actor: Annotated[str, Depends(get_actor)],
) -> PriceMappingCreated:
    """
    With auto_populate, a backfill job from populate_from_date (or the
    default lookback) to today is created and queued.
    """
    data = MappingInput(
        **payload.model_dump(exclude={"api_config"}),
        api_config=payload.api_config.model_dump(exclude_none=True) if payload.api_config else None,
    )
    mapping, job = service.create_mapping(db, data, actor, pool=pool)
    return PriceMappingCreated(
        mapping=PriceMappingResponse.model_validate(mapping),
        job=BackfillJobResponse.model_validate(job) if job else None,
    )


@router.get("/mappings", response_model=list[PriceMappingResponse], summary="List price mappings")
def list_price_mappings(
        db: Annotated[Session, Depends(get_db)],
        service: BackfillDep,
        asset_id: int | None = Query(default=None, gt=0),
) -> list[AssetPriceMapping]:
    return service.list_mappings(db, asset_id=asset_id)


# =============================================================================
# BACKFILL JOBS
# =============================================================================

@router.post(
    "/backfill",
    response_model=BackfillJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a historical price backfill",
)
@limiter.limit(RATE_LIMIT_BACKFILL)
def create_backfill(
        request: Request,
        payload: BackfillCreate,
        db: Annotated[Session, Depends(get_db)],
        service: BackfillDep,
        pool: PoolDep,
        actor: Annotated[str, Depends(get_actor)],
) -> PricePopulationJob:
    """
    **Errors:**
    - 400: Mapping belongs to another asset, or the range is too long
    - 404: Unknown asset or mapping
    """
    job = service.create_job(db, payload.asset_id, payload.mapping_id, payload.start_date, payload.end_date, actor)
    pool.submit(job.id)
    return job


@router.get("/backfill", response_model=list[BackfillJobResponse], summary="List backfill jobs")
def list_backfill_jobs(
        db: Annotated[Session, Depends(get_db)],
        service: BackfillDep,
        asset_id: int | None = Query(default=None, gt=0),
        job_status: PopulationStatus | None = Query(default=None, alias="status"),
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=MAX_LIST_LIMIT),
) -> list[PricePopulationJob]:
    return service.list_jobs(db, asset_id=asset_id, status=job_status, limit=limit, offset=offset)


@router.get("/backfill/{job_id}", response_model=BackfillJobResponse, summary="Backfill job progress")
def get_backfill_job(
        job_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: BackfillDep,
) -> PricePopulationJob:
    return service.get_job(db, job_id)


@router.post("/backfill/{job_id}/cancel", response_model=BackfillJobResponse, summary="Cancel a backfill job")
@limiter.limit(RATE_LIMIT_BACKFILL)
def cancel_backfill_job(
        request: Request,
        job_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: BackfillDep,
        pool: PoolDep,
        actor: Annotated[str, Depends(get_actor)],
) -> PricePopulationJob:
    """
    A running job stops before its next fetch and ends failed with the
    message "cancelled"; a queued one is failed straight away.

    **Errors:**
    - 409: Job already completed or failed
    """
    if pool.cancel(job_id):
        logger.info(f"Backfill job {job_id} cancellation requested by {actor}")
        job = service.get_job(db, job_id)
        db.refresh(job)
        return job
    return service.cancel_pending_job(db, job_id, actor)


# =============================================================================
# QUOTES
# =============================================================================

def _quote_response(quote: Quote) -> QuoteResponse:
    return QuoteResponse.model_validate(quote)


@router.get("/daily", response_model=QuoteResponse, summary="Cached price for a day")
def get_daily_price(
        db: Annotated[Session, Depends(get_db)],
        quotes: Annotated[QuoteService, Depends(get_quote_service)],
        symbol: str = Query(..., min_length=1, max_length=50, examples=["BTC"]),
        currency: str = Query(..., min_length=3, max_length=10, examples=["USD"]),
        day: date = Query(..., alias="date"),
) -> QuoteResponse:
    """
    Exact day first, then up to the configured fallback days earlier;
    an inverse pair is inverted. is_exact reports whether the requested
    day itself was cached.
    """
    return _quote_response(quotes.get_daily(db, symbol.strip().upper(), currency.strip().upper(), day))


@router.get("/latest", response_model=QuoteResponse, summary="Most recent cached price")
def get_latest_price(
        db: Annotated[Session, Depends(get_db)],
        quotes: Annotated[QuoteService, Depends(get_quote_service)],
        symbol: str = Query(..., min_length=1, max_length=50),
        currency: str = Query(..., min_length=3, max_length=10),
) -> QuoteResponse:
    return _quote_response(quotes.get_latest(db, symbol.strip().upper(), currency.strip().upper()))
