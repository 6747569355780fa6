# backend/ledger_core/services/actions/configs.py
"""
Typed configurations for predefined actions.

Each action is one Pydantic model with a literal `action` tag; together
they form the ActionConfig discriminated union accepted by POST /actions.

Validation layers:
- Field constraints: required fields, positivity, unknown keys rejected
- check_rules(): cross-field rules (distinct accounts, exclusive fee inputs)
- ActionService: rules that need the database (account types, quotes)
"""

import datetime as dt
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledger_core.services.exceptions import ValidationError

Horizon = Literal["short-term", "long-term"]


# =============================================================================
# BASE
# =============================================================================

class ActionBase(BaseModel):
    """Fields shared by every action."""

    model_config = ConfigDict(extra="forbid")

    date: dt.date
    note: str | None = Field(default=None, max_length=2000)
    tag: str | None = Field(default=None, max_length=255)
    counterparty: str | None = Field(default=None, max_length=255)
    fx_rates: dict[str, Decimal] | None = Field(
        default=None,
        description="Reporting-currency rates applied to every generated transaction",
    )

    def check_rules(self) -> None:
        """Cross-field checks. Raises ValidationError."""
        if self.fx_rates:
            for currency, rate in self.fx_rates.items():
                if rate is None or rate <= 0:
                    raise ValidationError(f"FX rate for {currency} must be positive", field="fx_rates")

    @staticmethod
    def _require_distinct(a: str, b: str, field: str) -> None:
        if a.strip().lower() == b.strip().lower():
            raise ValidationError("source and destination accounts must differ", field=field)


class _SingleAssetAction(ActionBase):
    asset: str = Field(..., min_length=1, max_length=50)
    price_local: Decimal = Field(default=Decimal("1"), ge=0)
    local_currency: str = Field(default="USD", min_length=3, max_length=10)

    @field_validator("asset", "local_currency")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


# =============================================================================
# ACTIONS
# =============================================================================

class SpendAction(ActionBase):
    """Cash expense paid from a cash or bank account."""

    action: Literal["spend"] = "spend"
    account: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=10)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()


class CreditSpendAction(SpendAction):
    """Expense charged to a credit card; no immediate cash-flow."""

    action: Literal["credit_spend"] = "credit_spend"


class SpotBuyAction(ActionBase):
    """Buy base_asset with quote_asset on an exchange account."""

    action: Literal["spot_buy"] = "spot_buy"
    exchange_account: str = Field(..., min_length=1, max_length=100)
    base_asset: str = Field(..., min_length=1, max_length=50)
    quote_asset: str = Field(..., min_length=1, max_length=50)
    quantity: Decimal = Field(..., gt=0)
    price_quote: Decimal | None = Field(default=None, gt=0, description="Quoted from the price cache when omitted")
    fee_percent: Decimal | None = Field(default=None, ge=0, lt=100)
    fee_base: Decimal | None = Field(default=None, ge=0)
    fee_quote: Decimal | None = Field(default=None, ge=0)

    @field_validator("base_asset", "quote_asset")
    @classmethod
    def normalize_asset(cls, v: str) -> str:
        return v.strip().upper()

    def check_rules(self) -> None:
        super().check_rules()
        if self.base_asset == self.quote_asset:
            raise ValidationError("base_asset and quote_asset must differ", field="quote_asset")
        if self.fee_percent and self.fee_quote:
            raise ValidationError("use either fee_percent or fee_quote, not both", field="fee_quote")


class BorrowAction(_SingleAssetAction):
    action: Literal["borrow"] = "borrow"
    account: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    borrow_apr: Decimal | None = Field(default=None, ge=0, le=10)
    borrow_term_days: int | None = Field(default=None, gt=0)


class RepayBorrowAction(_SingleAssetAction):
    action: Literal["repay_borrow"] = "repay_borrow"
    account: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)


class StakeAction(_SingleAssetAction):
    """Move funds into an investment account and open/extend a position lot."""

    action: Literal["stake"] = "stake"
    source_account: str = Field(..., min_length=1, max_length=100)
    investment_account: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    fee_percent: Decimal | None = Field(default=None, ge=0, lt=100)
    horizon: Horizon | None = None

    def check_rules(self) -> None:
        super().check_rules()
        self._require_distinct(self.source_account, self.investment_account, "investment_account")


class UnstakeAction(_SingleAssetAction):
    """Withdraw from a position lot back into a destination account."""

    action: Literal["unstake"] = "unstake"
    investment_account: str = Field(..., min_length=1, max_length=100)
    destination_account: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    exit_price: Decimal | None = Field(default=None, gt=0)
    investment_id: int | None = Field(default=None, gt=0)
    close_all: bool = False

    def check_rules(self) -> None:
        super().check_rules()
        self._require_distinct(self.investment_account, self.destination_account, "destination_account")


class InitBalanceAction(_SingleAssetAction):
    """Record an existing balance without modelling where it came from."""

    action: Literal["init_balance"] = "init_balance"
    account: str = Field(..., min_length=1, max_length=100)
    quantity: Decimal = Field(..., gt=0)
    horizon: Horizon | None = None


class InternalTransferAction(_SingleAssetAction):
    action: Literal["internal_transfer"] = "internal_transfer"
    source_account: str = Field(..., min_length=1, max_length=100)
    destination_account: str = Field(..., min_length=1, max_length=100)
    quantity: Decimal = Field(..., gt=0)

    def check_rules(self) -> None:
        super().check_rules()
        self._require_distinct(self.source_account, self.destination_account, "destination_account")


ActionConfig = Annotated[
    Union[
        SpendAction,
        CreditSpendAction,
        SpotBuyAction,
        BorrowAction,
        RepayBorrowAction,
        StakeAction,
        UnstakeAction,
        InitBalanceAction,
        InternalTransferAction,
    ],
    Field(discriminator="action"),
]
