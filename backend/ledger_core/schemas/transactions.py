# backend/ledger_core/schemas/transactions.py
"""
Pydantic schemas for ledger transactions.

Create schemas carry raw inputs only; amounts, cash-flows and the FX
snapshot are derived by the service and returned in the response.

IMPORTANT: All financial values use Decimal. Never use float for money.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledger_core.models import TransactionType
from ledger_core.services.constants import MAX_BATCH_SIZE


# =============================================================================
# CREATE
# =============================================================================

class TransactionCreate(BaseModel):
    """Request body for POST /transactions."""

    model_config = ConfigDict(extra="forbid")

    date: dt.date = Field(..., examples=["2024-03-01"])
    type: TransactionType
    asset: str = Field(..., min_length=1, max_length=50, examples=["BTC"])
    account: str = Field(..., min_length=1, max_length=100, examples=["Binance"])
    quantity: Decimal = Field(..., description="Non-zero; sign is applied from the type")
    price_local: Decimal = Field(..., ge=0, examples=["67000"])
    local_currency: str = Field(default="USD", min_length=3, max_length=10)
    fee_local: Decimal = Field(default=Decimal("0"), ge=0)
    fx_rates: dict[str, Decimal] | None = Field(
        default=None,
        description="Rate of 1 local unit in each reporting currency; missing ones are quoted",
        examples=[{"USD": "1", "VND": "24500"}],
    )
    counterparty: str | None = Field(default=None, max_length=255)
    tag: str | None = Field(default=None, max_length=255)
    note: str | None = Field(default=None, max_length=2000)
    internal_flow: bool = False
    horizon: str | None = Field(default=None, examples=["long-term"])
    investment_id: int | None = Field(default=None, gt=0)
    borrow_apr: Decimal | None = Field(default=None, ge=0, le=10)
    borrow_term_days: int | None = Field(default=None, gt=0)
    track_position: bool = Field(default=False, description="Route into the position engine")
    allow_overdraw: bool = False

    @field_validator("asset", "local_currency")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("account")
    @classmethod
    def strip_account(cls, v: str) -> str:
        return v.strip()


class TransactionBatchCreate(BaseModel):
    transactions: list[TransactionCreate] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


# =============================================================================
# RESPONSE
# =============================================================================

class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: dt.date
    type: TransactionType
    asset: str
    account: str
    counterparty: str | None
    tag: str | None
    note: str | None
    quantity: Decimal
    price_local: Decimal
    local_currency: str
    fee_local: Decimal
    fx_snapshot: dict[str, str]
    amount_local: Decimal
    delta_qty: Decimal
    cashflow_local: Decimal
    amounts: dict[str, str]
    cashflows: dict[str, str]
    internal_flow: bool
    horizon: str | None
    investment_id: int | None
    batch_id: str | None
    borrow_apr: Decimal | None
    borrow_term_days: int | None
    created_by: str
    created_at: dt.datetime


class TransactionBatchResponse(BaseModel):
    batch_id: str | None
    count: int
    transactions: list[TransactionResponse]
