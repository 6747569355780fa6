# backend/ledger_core/routers/transactions.py
"""
Ledger transaction endpoints.

Key concepts:
- Amounts, cash-flows and the FX snapshot are derived server-side; the
  request carries raw inputs only
- The FX snapshot is taken once at creation; recalculate re-derives
  from it and never fetches a new rate
- track_position routes the entry into a position lot
- A batch is saved entirely or not at all

Mutations require the X-Actor header.
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from ledger_core.database import get_db
from ledger_core.dependencies import get_actor, get_transaction_service
from ledger_core.middleware.rate_limit import limiter, RATE_LIMIT_WRITE
from ledger_core.models import Transaction, TransactionType
from ledger_core.schemas.transactions import (
    TransactionBatchCreate,
    TransactionBatchResponse,
    TransactionCreate,
    TransactionResponse,
)
from ledger_core.services.constants import MAX_LIST_LIMIT
from ledger_core.services.transactions import TransactionFilter, TransactionInput, TransactionService

logger = logging.getLogger(__name__)

# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"],
)


def _to_input(payload: TransactionCreate) -> TransactionInput:
    return TransactionInput(**payload.model_dump())


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a ledger transaction",
)
@limiter.limit(RATE_LIMIT_WRITE)
def create_transaction(
        request: Request,
        payload: TransactionCreate,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[TransactionService, Depends(get_transaction_service)],
        actor: Annotated[str, Depends(get_actor)],
) -> Transaction:
    """
    Record one transaction.

    Missing reporting-currency rates are quoted from the price cache for
    the transaction date.

    **Errors:**
    - 400: Invalid input, or an FX rate that is neither supplied nor cached
    - 404: investment_id does not exist
    - 409: Withdrawal exceeds the lot's remaining quantity
    """
    return service.create_transaction(db, _to_input(payload), actor)


@router.post(
    "/batch",
    response_model=TransactionBatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record several transactions atomically",
)
@limiter.limit(RATE_LIMIT_WRITE)
def create_transactions_batch(
        request: Request,
        payload: TransactionBatchCreate,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[TransactionService, Depends(get_transaction_service)],
        actor: Annotated[str, Depends(get_actor)],
) -> TransactionBatchResponse:
    """All items share one batch_id. If any item is rejected, none is saved."""
    created = service.create_transactions_batch(db, [_to_input(item) for item in payload.transactions], actor)
    return TransactionBatchResponse(
        batch_id=created[0].batch_id if created else None,
        count=len(created),
        transactions=[TransactionResponse.model_validate(tx) for tx in created],
    )


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List transactions",
)
def list_transactions(
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[TransactionService, Depends(get_transaction_service)],
        start_date: date | None = Query(default=None, description="Inclusive lower bound"),
        end_date: date | None = Query(default=None, description="Inclusive upper bound"),
        types: list[TransactionType] | None = Query(default=None, alias="type", description="Repeatable"),
        asset: str | None = Query(default=None, max_length=50),
        account: str | None = Query(default=None, max_length=100),
        tag: str | None = Query(default=None, max_length=255),
        counterparty: str | None = Query(default=None, max_length=255),
        investment_id: int | None = Query(default=None, gt=0),
        batch_id: str | None = Query(default=None, max_length=64),
        search: str | None = Query(default=None, max_length=255, description="Matches note, counterparty, tag or asset"),
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=MAX_LIST_LIMIT),
) -> list[Transaction]:
    """Newest first."""
    filters = TransactionFilter(
        start_date=start_date,
        end_date=end_date,
        types=types or [],
        asset=asset,
        account=account,
        tag=tag,
        counterparty=counterparty,
        investment_id=investment_id,
        batch_id=batch_id,
        search=search,
        limit=limit,
        offset=offset,
    )
    return service.list_transactions(db, filters)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a transaction",
)
def get_transaction(
        transaction_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[TransactionService, Depends(get_transaction_service)],
) -> Transaction:
    return service.get_transaction(db, transaction_id)


@router.post(
    "/{transaction_id}/recalculate",
    response_model=TransactionResponse,
    summary="Re-derive amounts from the stored FX snapshot",
)
@limiter.limit(RATE_LIMIT_WRITE)
def recalculate_transaction(
        request: Request,
        transaction_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[TransactionService, Depends(get_transaction_service)],
        actor: Annotated[str, Depends(get_actor)],
) -> Transaction:
    """Idempotent: repeated calls produce the same stored figures."""
    logger.debug(f"Recalculate of transaction {transaction_id} requested by {actor}")
    return service.recalculate_transaction(db, transaction_id)


@router.delete(
    "/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a transaction",
)
@limiter.limit(RATE_LIMIT_WRITE)
def delete_transaction(
        request: Request,
        transaction_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[TransactionService, Depends(get_transaction_service)],
        actor: Annotated[str, Depends(get_actor)],
) -> Response:
    """A linked position lot keeps its totals; delete the lot to remove both."""
    service.delete_transaction(db, transaction_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
