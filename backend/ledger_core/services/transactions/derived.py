# backend/ledger_core/services/transactions/derived.py
"""
Derived-field calculator for ledger transactions.

Turns a raw entry (quantity, unit price, FX snapshot, type) into:
- amount_local: quantity × unit price
- delta_qty: signed change in holdings
- cashflow_local: signed external cash movement
- amounts / cashflows: the same values in every reporting currency,
  using the rate captured in the FX snapshot

Design Principles:
- Pure functions: no database access, no clock, no quote lookups
- Deterministic: identical inputs give identical outputs, so a stored
  transaction can be recalculated at any time from its own snapshot
- Uses Decimal for ALL financial values

Usage:
    derived = compute_derived_fields(
        quantity=Decimal("100"),
        price_local=Decimal("1"),
        fx_snapshot={"USD": Decimal("1")},
        tx_type=TransactionType.EXPENSE,
    )
    derived.cashflows["USD"]  # Decimal("-100")
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from ledger_core.models import Horizon, TransactionType
from ledger_core.services.constants import ZERO
from ledger_core.services.exceptions import ValidationError


# =============================================================================
# SIGN TABLES
# =============================================================================

# Types that increase holdings in the account
POSITIVE_DELTA_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.BUY,
    TransactionType.DEPOSIT,
    TransactionType.TRANSFER_IN,
    TransactionType.INCOME,
    TransactionType.REWARD,
    TransactionType.AIRDROP,
    TransactionType.LEND,
    TransactionType.REPAY,
    TransactionType.INTEREST,
    # Liability is tracked by reporting, the receiving account still gains
    TransactionType.BORROW,
    TransactionType.STAKE,
})

# Types that decrease holdings in the account
NEGATIVE_DELTA_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.SELL,
    TransactionType.WITHDRAW,
    TransactionType.TRANSFER_OUT,
    TransactionType.EXPENSE,
    TransactionType.FEE,
    TransactionType.REPAY_BORROW,
    TransactionType.INTEREST_EXPENSE,
    TransactionType.UNSTAKE,
})

# Cash leaves: -(amount + fee)
OUTFLOW_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.BUY,
    TransactionType.EXPENSE,
    TransactionType.FEE,
    TransactionType.TRANSFER_OUT,
    TransactionType.LEND,
    TransactionType.REPAY_BORROW,
    TransactionType.INTEREST_EXPENSE,
})

# Cash arrives: amount - fee
INFLOW_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.SELL,
    TransactionType.INCOME,
    TransactionType.REWARD,
    TransactionType.AIRDROP,
    TransactionType.TRANSFER_IN,
    TransactionType.REPAY,
    TransactionType.INTEREST,
})

# Reclassifications between own holdings: no external cash movement.
# deposit, withdraw, borrow, stake, unstake and valuation fall here.

# Types zeroed when flagged as an internal flow between own accounts
INTERNAL_FLOW_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.BUY,
    TransactionType.SELL,
    TransactionType.TRANSFER_IN,
    TransactionType.TRANSFER_OUT,
})

VALID_HORIZONS: frozenset[str] = frozenset(h.value for h in Horizon)


# =============================================================================
# RESULT TYPE
# =============================================================================

@dataclass(frozen=True)
class DerivedFields:
    """
    Output of the calculator.

    Attributes:
        amount_local: quantity × price_local
        delta_qty: Signed quantity change
        cashflow_local: Signed cash-flow in the local currency
        amounts: amount_local converted per reporting currency
        cashflows: cashflow_local converted per reporting currency
    """

    amount_local: Decimal
    delta_qty: Decimal
    cashflow_local: Decimal
    amounts: dict[str, Decimal] = field(default_factory=dict)
    cashflows: dict[str, Decimal] = field(default_factory=dict)

    def amounts_json(self) -> dict[str, str]:
        return {currency: str(value) for currency, value in self.amounts.items()}

    def cashflows_json(self) -> dict[str, str]:
        return {currency: str(value) for currency, value in self.cashflows.items()}


# =============================================================================
# CALCULATOR
# =============================================================================

def compute_delta_qty(quantity: Decimal, tx_type: TransactionType) -> Decimal:
    """Signed holdings change for one transaction."""
    if tx_type in POSITIVE_DELTA_TYPES:
        return quantity
    if tx_type in NEGATIVE_DELTA_TYPES:
        return -quantity
    return ZERO


def compute_cashflow_local(
        amount_local: Decimal,
        tx_type: TransactionType,
        fee_local: Decimal = ZERO,
        is_credit_account: bool = False,
        internal_flow: bool = False,
) -> Decimal:
    """
    Signed external cash movement in the local currency.

    Overrides, in order:
        1. internal_flow on buy/sell/transfer_in/transfer_out → 0
        2. expense on a credit account → 0 (the liability absorbs it)
        3. deposit/withdraw/borrow/stake/unstake/valuation → 0
    """
    if internal_flow and tx_type in INTERNAL_FLOW_TYPES:
        return ZERO

    if is_credit_account and tx_type == TransactionType.EXPENSE:
        return ZERO

    if tx_type in OUTFLOW_TYPES:
        return -(amount_local + fee_local)
    if tx_type in INFLOW_TYPES:
        return amount_local - fee_local

    return ZERO


def compute_derived_fields(
        quantity: Decimal,
        price_local: Decimal,
        fx_snapshot: Mapping[str, Any],
        tx_type: TransactionType,
        *,
        fee_local: Decimal = ZERO,
        is_credit_account: bool = False,
        internal_flow: bool = False,
) -> DerivedFields:
    """
    Compute every derived field of a transaction.

    Args:
        quantity: Transaction quantity (non-zero)
        price_local: Unit price in the local currency
        fx_snapshot: Reporting currency → rate from the local currency.
            Values may be Decimal or decimal strings (as stored in JSON).
        tx_type: Transaction type
        fee_local: Fee in the local currency
        is_credit_account: True when the account is credit-style
        internal_flow: True for movements between the user's own accounts

    Returns:
        DerivedFields with local and per-reporting-currency values
    """
    tx_type = TransactionType(tx_type)
    fee_local = fee_local or ZERO

    amount_local = quantity * price_local
    delta_qty = compute_delta_qty(quantity, tx_type)
    cashflow_local = compute_cashflow_local(
        amount_local,
        tx_type,
        fee_local=fee_local,
        is_credit_account=is_credit_account,
        internal_flow=internal_flow,
    )

    rates = parse_fx_snapshot(fx_snapshot)
    amounts = {currency: amount_local * rate for currency, rate in rates.items()}
    cashflows = {currency: cashflow_local * rate for currency, rate in rates.items()}

    return DerivedFields(
        amount_local=amount_local,
        delta_qty=delta_qty,
        cashflow_local=cashflow_local,
        amounts=amounts,
        cashflows=cashflows,
    )


def parse_fx_snapshot(fx_snapshot: Mapping[str, Any] | None) -> dict[str, Decimal]:
    """
    Normalize a snapshot to {CURRENCY: Decimal}.

    Raises:
        ValidationError: A rate is not a number
    """
    rates: dict[str, Decimal] = {}
    for currency, raw in (fx_snapshot or {}).items():
        try:
            rates[currency.upper()] = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"FX rate for {currency} is not a number: {raw!r}", field="fx_snapshot")
    return rates


# =============================================================================
# VALIDATION
# =============================================================================

def validate_transaction_input(
        *,
        tx_date: date | None,
        tx_type: str | None,
        asset: str | None,
        account: str | None,
        quantity: Decimal | None,
        price_local: Decimal | None,
        local_currency: str | None,
        fx_snapshot: Mapping[str, Any] | None,
        reporting_currencies: Iterable[str] = (),
        fee_local: Decimal | None = None,
        horizon: str | None = None,
        borrow_apr: Decimal | None = None,
        borrow_term_days: int | None = None,
) -> None:
    """
    Reject malformed input before anything is computed or persisted.

    Raises:
        ValidationError: With the offending field name
    """
    if tx_date is None:
        raise ValidationError("date is required", field="date")
    if not tx_type:
        raise ValidationError("type is required", field="type")
    try:
        TransactionType(tx_type)
    except ValueError:
        raise ValidationError(f"Unknown transaction type: {tx_type}", field="type")
    if not asset:
        raise ValidationError("asset is required", field="asset")
    if not account:
        raise ValidationError("account is required", field="account")
    if quantity is None or quantity == ZERO:
        raise ValidationError("quantity must be non-zero", field="quantity")
    if price_local is None or price_local < ZERO:
        raise ValidationError("price must be non-negative", field="price_local")
    if not local_currency:
        raise ValidationError("local currency is required", field="local_currency")
    if fee_local is not None and fee_local < ZERO:
        raise ValidationError("fee must be non-negative", field="fee_local")

    if borrow_apr is not None and borrow_apr < ZERO:
        raise ValidationError("borrow_apr must be non-negative", field="borrow_apr")
    if borrow_term_days is not None and borrow_term_days < 0:
        raise ValidationError("borrow_term_days must be non-negative", field="borrow_term_days")

    if horizon is not None and horizon not in VALID_HORIZONS:
        raise ValidationError("horizon must be 'short-term' or 'long-term'", field="horizon")

    rates = parse_fx_snapshot(fx_snapshot)
    for currency in reporting_currencies:
        rate = rates.get(currency.upper())
        if rate is None:
            raise ValidationError(f"FX rate to {currency} is required", field="fx_snapshot")
        if rate <= ZERO:
            raise ValidationError(f"FX rate to {currency} must be positive", field="fx_snapshot")
