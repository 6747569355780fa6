# backend/ledger_core/schemas/reports.py
"""Read-only report schemas."""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class HoldingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    asset: str
    account: str
    quantity: Decimal


class HoldingsReport(BaseModel):
    as_of: dt.date | None
    holdings: list[HoldingResponse]


class CashflowReport(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    currency: str
    start_date: dt.date | None
    end_date: dt.date | None
    inflow: Decimal
    outflow: Decimal
    net: Decimal
    by_type: dict[str, Decimal]
    transaction_count: int


class PnLReport(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    realized_pnl: Decimal
    open_cost_basis: Decimal
    open_positions: int
    closed_positions: int
    by_asset: dict[str, Decimal]
