# backend/ledger_core/routers/positions.py
"""
Position lot endpoints.

Lots are opened and extended by deposit-like transactions with
track_position set; these endpoints read, force-close and delete them.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import Session

from ledger_core.database import get_db
from ledger_core.dependencies import get_actor, get_position_service
from ledger_core.middleware.rate_limit import limiter, RATE_LIMIT_WRITE
from ledger_core.schemas.positions import (
    PositionClose,
    PositionDeleteResponse,
    PositionResponse,
    position_response,
)
from ledger_core.services.constants import MAX_LIST_LIMIT
from ledger_core.services.positions import PositionService, PositionSummary

router = APIRouter(
    prefix="/positions",
    tags=["Positions"],
)


@router.get("", response_model=list[PositionResponse], summary="List position lots")
def list_positions(
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[PositionService, Depends(get_position_service)],
        asset: str | None = Query(default=None, max_length=50),
        account: str | None = Query(default=None, max_length=100),
        is_open: bool | None = Query(default=None),
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=MAX_LIST_LIMIT),
) -> list[PositionResponse]:
    lots = service.list_positions(db, asset=asset, account=account, is_open=is_open, limit=limit, offset=offset)
    return [position_response(PositionSummary.of(lot)) for lot in lots]


@router.get("/{position_id}", response_model=PositionResponse, summary="Get a position lot")
def get_position(
        position_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[PositionService, Depends(get_position_service)],
) -> PositionResponse:
    return position_response(PositionSummary.of(service.get_position(db, position_id)))


@router.post("/{position_id}/close", response_model=PositionResponse, summary="Force-close a lot")
@limiter.limit(RATE_LIMIT_WRITE)
def close_position(
        request: Request,
        position_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[PositionService, Depends(get_position_service)],
        actor: Annotated[str, Depends(get_actor)],
        payload: Annotated[PositionClose | None, Body()] = None,
) -> PositionResponse:
    """
    Outstanding quantity is written off: P&L is the withdrawal value minus
    the full deposit cost. Closing a closed lot returns it unchanged.
    """
    on = payload.on if payload else None
    return position_response(PositionSummary.of(service.close_position(db, position_id, actor, on=on)))


@router.delete("/{position_id}", response_model=PositionDeleteResponse, summary="Delete a lot")
@limiter.limit(RATE_LIMIT_WRITE)
def delete_position(
        request: Request,
        position_id: int,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[PositionService, Depends(get_position_service)],
        actor: Annotated[str, Depends(get_actor)],
) -> PositionDeleteResponse:
    """Deletes the lot and every transaction linked to it."""
    deleted = service.delete_position(db, position_id, actor)
    return PositionDeleteResponse(id=position_id, deleted_transactions=deleted)
