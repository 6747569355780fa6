# backend/ledger_core/routers/vaults.py
"""
Vault endpoints.

Key concepts:
- kind=tokenized vaults issue shares at the current share price;
  kind=simple_position vaults track contributed capital and value only
- In manual pricing mode the share price is set by the owner and AUM
  follows supply × price; yield, fee and valuation need market mode
- Every mutation appends one row to the vault ledger

All mutations require the X-Actor header.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ledger_core.database import get_db
from ledger_core.dependencies import get_actor, get_vault_service
from ledger_core.middleware.rate_limit import limiter, RATE_LIMIT_WRITE
from ledger_core.models import Vault, VaultKind, VaultShare, VaultStatus, VaultTransaction, VaultTransactionType
from ledger_core.schemas.vaults import (
    ManualPriceUpdate,
    ManualTotalValueUpdate,
    VaultCreate,
    VaultDeposit,
    VaultFee,
    VaultFlowResponse,
    VaultResponse,
    VaultShareResponse,
    VaultSummaryResponse,
    VaultTransactionResponse,
    VaultValuation,
    VaultWithdraw,
    VaultYield,
)
from ledger_core.services.constants import MAX_LIST_LIMIT
from ledger_core.services.vaults import VaultInput, VaultService

router = APIRouter(
    prefix="/vaults",
    tags=["Vaults"],
)

ServiceDep = Annotated[VaultService, Depends(get_vault_service)]
DbDep = Annotated[Session, Depends(get_db)]
ActorDep = Annotated[str, Depends(get_actor)]


# =============================================================================
# LIFECYCLE
# =============================================================================

@router.post("", response_model=VaultResponse, status_code=status.HTTP_201_CREATED, summary="Create a vault")
@limiter.limit(RATE_LIMIT_WRITE)
def create_vault(request: Request, payload: VaultCreate, db: DbDep, service: ServiceDep, actor: ActorDep) -> Vault:
    """
    **Errors:**
    - 400: Invalid limits, or a duplicate name
    - 409: Manual pricing requested for a simple_position vault
    """
    return service.create_vault(db, VaultInput(**payload.model_dump()), actor)


@router.get("", response_model=list[VaultResponse], summary="List vaults")
def list_vaults(
        db: DbDep,
        service: ServiceDep,
        status_filter: VaultStatus | None = Query(default=None, alias="status"),
        kind: VaultKind | None = Query(default=None),
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=MAX_LIST_LIMIT),
) -> list[Vault]:
    return service.list_vaults(db, status=status_filter, kind=kind, limit=limit, offset=offset)


@router.get("/{vault_id}", response_model=VaultResponse, summary="Get a vault")
def get_vault(vault_id: int, db: DbDep, service: ServiceDep) -> Vault:
    return service.get_vault(db, vault_id)


@router.post("/{vault_id}/close", response_model=VaultResponse, summary="Close a vault")
@limiter.limit(RATE_LIMIT_WRITE)
def close_vault(request: Request, vault_id: int, db: DbDep, service: ServiceDep, actor: ActorDep) -> Vault:
    """A tokenized vault can only be closed once every share is redeemed."""
    return service.close_vault(db, vault_id, actor)


# =============================================================================
# CAPITAL FLOWS
# =============================================================================

@router.post("/{vault_id}/deposit", response_model=VaultFlowResponse, summary="Deposit capital")
@limiter.limit(RATE_LIMIT_WRITE)
def deposit(
        request: Request,
        vault_id: int,
        payload: VaultDeposit,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> VaultFlowResponse:
    result = service.deposit(db, vault_id, payload.holder, payload.amount, actor, on=payload.date, notes=payload.notes)
    return VaultFlowResponse(vault_id=vault_id, holder=payload.holder, **vars(result))


@router.post("/{vault_id}/withdraw", response_model=VaultFlowResponse, summary="Withdraw capital")
@limiter.limit(RATE_LIMIT_WRITE)
def withdraw(
        request: Request,
        vault_id: int,
        payload: VaultWithdraw,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> VaultFlowResponse:
    """
    Withdraw by amount or by shares. The share price is unchanged by a
    withdrawal.

    **Errors:**
    - 409: More shares than the holder owns, or more value than the vault holds
    """
    result = service.withdraw(
        db, vault_id, payload.holder, actor,
        amount=payload.amount, shares=payload.shares, on=payload.date, notes=payload.notes,
    )
    return VaultFlowResponse(vault_id=vault_id, holder=payload.holder, **vars(result))


@router.post("/{vault_id}/yield", response_model=VaultResponse, summary="Record yield")
@limiter.limit(RATE_LIMIT_WRITE)
def record_yield(
        request: Request,
        vault_id: int,
        payload: VaultYield,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> Vault:
    return service.record_yield(db, vault_id, payload.amount, actor, notes=payload.notes)


@router.post("/{vault_id}/fee", response_model=VaultResponse, summary="Charge a fee")
@limiter.limit(RATE_LIMIT_WRITE)
def record_fee(
        request: Request,
        vault_id: int,
        payload: VaultFee,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> Vault:
    return service.record_fee(
        db, vault_id, actor,
        fee_amount=payload.fee_amount, fee_rate=payload.fee_rate, fee_type=payload.fee_type, notes=payload.notes,
    )


@router.post("/{vault_id}/valuation", response_model=VaultResponse, summary="Record a market valuation")
@limiter.limit(RATE_LIMIT_WRITE)
def record_valuation(
        request: Request,
        vault_id: int,
        payload: VaultValuation,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> Vault:
    return service.record_valuation(db, vault_id, payload.total_value, actor, notes=payload.notes)


# =============================================================================
# MANUAL PRICING
# =============================================================================

@router.post("/{vault_id}/manual-pricing/enable", response_model=VaultResponse, summary="Enable manual pricing")
@limiter.limit(RATE_LIMIT_WRITE)
def enable_manual_pricing(
        request: Request,
        vault_id: int,
        payload: ManualPriceUpdate,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> Vault:
    """The initial price must be positive."""
    return service.enable_manual_pricing(db, vault_id, payload.price, actor, notes=payload.notes)


@router.post("/{vault_id}/manual-pricing/disable", response_model=VaultResponse, summary="Disable manual pricing")
@limiter.limit(RATE_LIMIT_WRITE)
def disable_manual_pricing(request: Request, vault_id: int, db: DbDep, service: ServiceDep, actor: ActorDep) -> Vault:
    return service.disable_manual_pricing(db, vault_id, actor)


@router.post("/{vault_id}/manual-pricing/price", response_model=VaultResponse, summary="Set the manual share price")
@limiter.limit(RATE_LIMIT_WRITE)
def update_manual_price(
        request: Request,
        vault_id: int,
        payload: ManualPriceUpdate,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> Vault:
    return service.update_manual_price(db, vault_id, payload.price, actor, notes=payload.notes)


@router.post(
    "/{vault_id}/manual-pricing/total-value",
    response_model=VaultResponse,
    summary="Set the total value and derive the share price",
)
@limiter.limit(RATE_LIMIT_WRITE)
def update_manual_total_value(
        request: Request,
        vault_id: int,
        payload: ManualTotalValueUpdate,
        db: DbDep,
        service: ServiceDep,
        actor: ActorDep,
) -> Vault:
    """
    The share price moves by new_total / (reference_total + net_contribution_delta),
    so capital added or removed since the last update does not count as
    performance.
    """
    return service.update_manual_total_value(
        db, vault_id, payload.total_value, actor,
        net_contribution_delta=payload.net_contribution_delta, notes=payload.notes,
    )


# =============================================================================
# READS
# =============================================================================

@router.get("/{vault_id}/transactions", response_model=list[VaultTransactionResponse], summary="Vault ledger")
def list_vault_transactions(
        vault_id: int,
        db: DbDep,
        service: ServiceDep,
        holder: str | None = Query(default=None, max_length=100),
        types: list[VaultTransactionType] | None = Query(default=None, alias="type"),
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=MAX_LIST_LIMIT),
) -> list[VaultTransaction]:
    return service.list_transactions(db, vault_id, holder=holder, types=types, limit=limit, offset=offset)


@router.get("/{vault_id}/shares", response_model=list[VaultShareResponse], summary="Holder balances")
def list_vault_shares(
        vault_id: int,
        db: DbDep,
        service: ServiceDep,
        holder: str | None = Query(default=None, max_length=100),
) -> list[VaultShare]:
    return service.get_shares(db, vault_id, holder=holder)


@router.get("/{vault_id}/summary", response_model=VaultSummaryResponse, summary="Vault summary")
def get_vault_summary(vault_id: int, db: DbDep, service: ServiceDep) -> VaultSummaryResponse:
    return VaultSummaryResponse.model_validate(service.get_summary(db, vault_id))
