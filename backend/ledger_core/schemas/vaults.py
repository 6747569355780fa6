# backend/ledger_core/schemas/vaults.py
"""
Pydantic schemas for vaults.

Create/flow/pricing request bodies, and responses for vaults, holdings,
ledger rows and the summary view.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledger_core.models import (
    VaultKind,
    VaultStatus,
    VaultTransactionStatus,
    VaultTransactionType,
    VaultType,
)


# =============================================================================
# REQUESTS
# =============================================================================

class VaultCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255, examples=["Growth Fund"])
    kind: VaultKind = VaultKind.TOKENIZED
    vault_type: VaultType = VaultType.USER_DEFINED
    description: str | None = Field(default=None, max_length=2000)
    token_symbol: str | None = Field(default=None, max_length=20)
    token_decimals: int = Field(default=18, ge=0, le=36)
    initial_share_price: Decimal = Field(default=Decimal("1"), gt=0)
    min_deposit_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_deposit_amount: Decimal | None = Field(default=None, gt=0)
    min_withdrawal_amount: Decimal = Field(default=Decimal("0"), ge=0)
    is_deposit_allowed: bool = True
    is_withdrawal_allowed: bool = True
    inception_date: dt.date | None = None
    enable_manual_pricing: bool = False
    initial_total_value: Decimal | None = Field(default=None, gt=0)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v


class VaultDeposit(BaseModel):
    holder: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    date: dt.date | None = None
    notes: str | None = Field(default=None, max_length=2000)


class VaultWithdraw(BaseModel):
    """Withdraw by amount or by shares; exactly one is required."""

    holder: str = Field(..., min_length=1, max_length=100)
    amount: Decimal | None = Field(default=None, gt=0)
    shares: Decimal | None = Field(default=None, gt=0)
    date: dt.date | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def exactly_one(self) -> "VaultWithdraw":
        if (self.amount is None) == (self.shares is None):
            raise ValueError("Provide exactly one of amount or shares")
        return self


class VaultYield(BaseModel):
    amount: Decimal = Field(..., gt=0)
    notes: str | None = Field(default=None, max_length=2000)


class VaultFee(BaseModel):
    fee_amount: Decimal | None = Field(default=None, gt=0)
    fee_rate: Decimal | None = Field(default=None, gt=0, le=1)
    fee_type: str | None = Field(default=None, max_length=50, examples=["management"])
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def exactly_one(self) -> "VaultFee":
        if (self.fee_amount is None) == (self.fee_rate is None):
            raise ValueError("Provide exactly one of fee_amount or fee_rate")
        return self


class VaultValuation(BaseModel):
    total_value: Decimal = Field(..., ge=0)
    notes: str | None = Field(default=None, max_length=2000)


class ManualPriceUpdate(BaseModel):
    price: Decimal = Field(..., ge=0)
    notes: str | None = Field(default=None, max_length=2000)


class ManualTotalValueUpdate(BaseModel):
    total_value: Decimal = Field(..., gt=0)
    net_contribution_delta: Decimal = Field(
        default=Decimal("0"),
        description="Capital added (+) or removed (-) since the last total value update",
    )
    notes: str | None = Field(default=None, max_length=2000)


# =============================================================================
# RESPONSES
# =============================================================================

class VaultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: VaultKind
    vault_type: VaultType
    status: VaultStatus
    description: str | None
    token_symbol: str | None
    token_decimals: int
    total_supply: Decimal
    total_assets_under_management: Decimal
    current_share_price: Decimal
    initial_share_price: Decimal
    high_watermark: Decimal
    is_user_defined_price: bool
    manual_price_per_share: Decimal | None
    manual_pricing_reference_aum: Decimal | None
    manual_pricing_reference_price: Decimal | None
    price_last_updated_by: str | None
    price_last_updated_at: dt.datetime | None
    price_update_notes: str | None
    total_contributed: Decimal
    total_withdrawn: Decimal
    min_deposit_amount: Decimal
    max_deposit_amount: Decimal | None
    min_withdrawal_amount: Decimal
    is_deposit_allowed: bool
    is_withdrawal_allowed: bool
    inception_date: dt.date
    created_by: str


class VaultShareResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    holder: str
    share_balance: Decimal
    cost_basis: Decimal
    avg_cost_per_share: Decimal
    total_deposits: Decimal
    total_withdrawals: Decimal
    net_deposits: Decimal
    current_market_value: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    realized_pnl: Decimal
    first_deposit_date: dt.date | None
    last_activity_date: dt.date | None


class VaultTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vault_id: int
    holder: str | None
    type: VaultTransactionType
    status: VaultTransactionStatus
    amount: Decimal
    shares: Decimal
    price_per_share: Decimal
    fee_amount: Decimal
    fee_type: str | None
    fee_rate: Decimal | None
    vault_aum_before: Decimal
    vault_aum_after: Decimal
    share_price_before: Decimal
    share_price_after: Decimal
    user_shares_before: Decimal
    user_shares_after: Decimal
    timestamp: dt.datetime
    notes: str | None
    created_by: str


class VaultFlowResponse(BaseModel):
    vault_id: int
    holder: str
    amount: Decimal
    shares: Decimal
    price_per_share: Decimal
    realized_pnl: Decimal


class VaultSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vault: VaultResponse
    share_price: Decimal
    total_supply: Decimal
    aum: Decimal
    total_contributed: Decimal
    total_withdrawn: Decimal
    pnl: Decimal
    performance_since_inception: Decimal
    holder_count: int
