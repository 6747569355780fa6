# backend/ledger_core/services/vaults/shares.py
"""
Per-holder share ledger arithmetic.

A holding keeps its own weighted-average cost per share, independent of
the vault's pricing mode. Burning realizes proceeds - shares × avg_cost.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_core.services.constants import HUNDRED, ZERO
from ledger_core.services.exceptions import InsufficientSharesError, ValidationError


@dataclass(frozen=True)
class BurnResult:
    shares: Decimal
    proceeds: Decimal
    cost_basis: Decimal
    realized_pnl: Decimal


def mint_shares(holding, shares: Decimal, cost_per_share: Decimal, on: date | None = None) -> Decimal:
    """
    Add shares to a holding.

    Returns:
        Cost added (shares × cost_per_share)

    Raises:
        ValidationError: shares <= 0 or cost_per_share < 0
    """
    if shares is None or shares <= ZERO:
        raise ValidationError("shares must be positive", field="shares")
    if cost_per_share is None or cost_per_share < ZERO:
        raise ValidationError("cost per share cannot be negative", field="cost_per_share")

    added = shares * cost_per_share
    balance = holding.share_balance or ZERO

    if balance == ZERO:
        holding.avg_cost_per_share = cost_per_share
    else:
        holding.avg_cost_per_share = ((holding.cost_basis or ZERO) + added) / (balance + shares)

    holding.share_balance = balance + shares
    holding.cost_basis = (holding.cost_basis or ZERO) + added
    holding.total_deposits = (holding.total_deposits or ZERO) + added
    holding.net_deposits = (holding.net_deposits or ZERO) + added

    if on is not None:
        if holding.first_deposit_date is None:
            holding.first_deposit_date = on
        holding.last_activity_date = on
    return added


def burn_shares(holding, shares: Decimal, value_per_share: Decimal, on: date | None = None) -> BurnResult:
    """
    Remove shares from a holding at value_per_share.

    Raises:
        ValidationError: shares <= 0 or value_per_share < 0
        InsufficientSharesError: shares > balance
    """
    if shares is None or shares <= ZERO:
        raise ValidationError("shares must be positive", field="shares")
    if value_per_share is None or value_per_share < ZERO:
        raise ValidationError("value per share cannot be negative", field="price")

    balance = holding.share_balance or ZERO
    if shares > balance:
        raise InsufficientSharesError(shares, balance)

    proceeds = shares * value_per_share
    cost = shares * (holding.avg_cost_per_share or ZERO)
    realized = proceeds - cost

    holding.share_balance = balance - shares
    holding.cost_basis = (holding.cost_basis or ZERO) - cost
    holding.total_withdrawals = (holding.total_withdrawals or ZERO) + proceeds
    holding.net_deposits = (holding.net_deposits or ZERO) - cost
    holding.realized_pnl = (holding.realized_pnl or ZERO) + realized

    # Dust left from division is treated as a full exit.
    if holding.share_balance == ZERO:
        holding.cost_basis = ZERO

    if on is not None:
        holding.last_activity_date = on

    return BurnResult(shares=shares, proceeds=proceeds, cost_basis=cost, realized_pnl=realized)


def mark_to_market(holding, price: Decimal) -> None:
    holding.current_market_value = (holding.share_balance or ZERO) * price
    holding.unrealized_pnl = holding.current_market_value - (holding.cost_basis or ZERO)
    if holding.cost_basis and holding.cost_basis > ZERO:
        holding.unrealized_pnl_percent = holding.unrealized_pnl / holding.cost_basis * HUNDRED
    else:
        holding.unrealized_pnl_percent = ZERO


def total_return(holding) -> Decimal:
    """
    Total return percentage including realized withdrawals.

    (market_value + withdrawals - total_deposits) / total_deposits × 100
    """
    withdrawals = holding.total_withdrawals or ZERO
    total_cost = holding.total_deposits or ZERO
    if total_cost == ZERO:
        return ZERO
    total_value = (holding.current_market_value or ZERO) + withdrawals
    return (total_value - total_cost) / total_cost * HUNDRED
