# backend/ledger_core/routers/actions.py
"""
Predefined action endpoint.

One request expands into several ledger transactions (and possibly a
position lot), saved together or not at all.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ledger_core.database import get_db
from ledger_core.dependencies import get_action_service, get_actor
from ledger_core.middleware.rate_limit import limiter, RATE_LIMIT_WRITE
from ledger_core.schemas.actions import ActionRequest, ActionResponse
from ledger_core.schemas.positions import position_response
from ledger_core.schemas.transactions import TransactionResponse
from ledger_core.services.actions import ActionService
from ledger_core.services.positions import PositionSummary

router = APIRouter(
    prefix="/actions",
    tags=["Actions"],
)


@router.post(
    "",
    response_model=ActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Perform a predefined action",
)
@limiter.limit(RATE_LIMIT_WRITE)
def perform_action(
        request: Request,
        payload: ActionRequest,
        db: Annotated[Session, Depends(get_db)],
        service: Annotated[ActionService, Depends(get_action_service)],
        actor: Annotated[str, Depends(get_actor)],
) -> ActionResponse:
    """
    Supported actions: spend, credit_spend, spot_buy, borrow, repay_borrow,
    stake, unstake, init_balance, internal_transfer.

    **Errors:**
    - 400: Cross-field or account-type rule violated, or no price available
    - 409: Unstake exceeds the lot's remaining quantity
    - 422: Unknown action or malformed fields
    """
    result = service.perform(db, payload.root, actor)
    return ActionResponse(
        action=result.action,
        transactions=[TransactionResponse.model_validate(tx) for tx in result.transactions],
        position=position_response(PositionSummary.of(result.position)) if result.position else None,
        executed_at=result.executed_at,
    )
