# backend/ledger_core/schemas/positions.py
"""Pydantic schemas for position lots."""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ledger_core.models import CostBasisMethod


class PositionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset: str
    account: str
    horizon: str | None
    deposit_date: dt.date
    deposit_qty: Decimal
    deposit_cost: Decimal
    deposit_unit_cost: Decimal
    withdrawal_date: dt.date | None
    withdrawal_qty: Decimal
    withdrawal_value: Decimal
    withdrawal_unit_price: Decimal
    remaining_qty: Decimal
    realized_pnl: Decimal = Field(description="Headline P&L once closed, zero while open")
    realized_pnl_accrued: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    is_open: bool
    cost_basis_method: CostBasisMethod
    created_by: str | None
    closed_by: str | None


class PositionClose(BaseModel):
    on: dt.date | None = Field(default=None, description="Close date (defaults to today)")


class PositionDeleteResponse(BaseModel):
    id: int
    deleted_transactions: int


def position_response(summary) -> PositionResponse:
    """Build a response from a PositionSummary."""
    lot = summary.position
    data = {name: getattr(lot, name) for name in PositionResponse.model_fields if hasattr(lot, name)}
    data["remaining_qty"] = summary.remaining_qty
    data["realized_pnl"] = summary.realized_pnl
    return PositionResponse.model_validate(data)
