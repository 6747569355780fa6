# backend/ledger_core/services/positions/calculator.py
"""
Weighted-average cost-basis arithmetic for a position lot.

These functions mutate a lot in place. A lot is anything exposing the
Investment attributes (deposit_qty, deposit_cost, deposit_unit_cost,
withdrawal_qty, withdrawal_value, withdrawal_unit_price,
realized_pnl_accrued, pnl, pnl_percent, is_open, deposit_date,
withdrawal_date), so tests can use a plain dataclass.

Validation happens before any attribute is touched: a raised error
leaves the lot unchanged.

Realization policy:
    While a lot is open its headline pnl is ZERO. Each withdrawal's
    realized P&L is added to realized_pnl_accrued for reporting, and the
    headline figure is only finalized when the lot closes.

Cost basis methods:
    "fifo" and "lifo" are accepted and stored on the lot, but every
    method is computed as weighted average.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_core.services.constants import HUNDRED, ZERO
from ledger_core.services.exceptions import InsufficientQuantityError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WithdrawalResult:
    """
    Outcome of one withdrawal event.

    Attributes:
        quantity: Quantity withdrawn
        value: Proceeds of the withdrawal
        cost_basis: Deposit cost attributed to the withdrawn quantity
        realized_pnl: value - cost_basis
        remaining_qty: Quantity left in the lot afterwards
        closed: True when this withdrawal closed the lot
    """

    quantity: Decimal
    value: Decimal
    cost_basis: Decimal
    realized_pnl: Decimal
    remaining_qty: Decimal
    closed: bool


def remaining_quantity(lot) -> Decimal:
    """deposit_qty - withdrawal_qty"""
    return (lot.deposit_qty or ZERO) - (lot.withdrawal_qty or ZERO)


def add_deposit(lot, qty: Decimal, cost: Decimal, on: date | None = None) -> None:
    """
    Add a deposit and recompute the weighted-average unit cost.

    unit_cost = (old_cost + cost) / (old_qty + qty)

    Raises:
        ValidationError: qty <= 0 or cost < 0
    """
    if qty is None or qty <= ZERO:
        raise ValidationError("deposit quantity must be positive", field="quantity")
    if cost is None or cost < ZERO:
        raise ValidationError("deposit cost cannot be negative", field="cost")

    total_qty = (lot.deposit_qty or ZERO) + qty
    total_cost = (lot.deposit_cost or ZERO) + cost

    lot.deposit_qty = total_qty
    lot.deposit_cost = total_cost
    lot.deposit_unit_cost = total_cost / total_qty

    if on is not None and getattr(lot, "deposit_date", None) is None:
        lot.deposit_date = on


def add_withdrawal(
        lot,
        qty: Decimal,
        value: Decimal,
        on: date | None = None,
        allow_overdraw: bool = False,
) -> WithdrawalResult:
    """
    Record a withdrawal against the lot.

    cost_basis = deposit_cost × min(qty, remaining) / deposit_qty
    realized   = value - cost_basis

    Overdrawing (qty > remaining) is only allowed with allow_overdraw; the
    cost basis is then capped at the cost of what remained.

    Raises:
        ValidationError: qty <= 0 or value < 0
        InsufficientQuantityError: qty > remaining without allow_overdraw
    """
    if qty is None or qty <= ZERO:
        raise ValidationError("withdrawal quantity must be positive", field="quantity")
    if value is None or value < ZERO:
        raise ValidationError("withdrawal value cannot be negative", field="value")

    remaining = remaining_quantity(lot)
    if qty > remaining and not allow_overdraw:
        raise InsufficientQuantityError(requested=qty, available=remaining)

    deposit_qty = lot.deposit_qty or ZERO
    covered_qty = min(qty, max(remaining, ZERO))
    if deposit_qty > ZERO:
        cost_basis = (lot.deposit_cost or ZERO) * covered_qty / deposit_qty
    else:
        cost_basis = ZERO
    realized = value - cost_basis

    lot.withdrawal_qty = (lot.withdrawal_qty or ZERO) + qty
    lot.withdrawal_value = (lot.withdrawal_value or ZERO) + value
    lot.withdrawal_unit_price = lot.withdrawal_value / lot.withdrawal_qty
    lot.realized_pnl_accrued = (lot.realized_pnl_accrued or ZERO) + realized
    if on is not None:
        lot.withdrawal_date = on

    new_remaining = remaining_quantity(lot)
    closed = False
    if new_remaining <= ZERO:
        _finalize(lot)
        closed = True
    else:
        lot.pnl = ZERO
        lot.pnl_percent = ZERO

    if qty > remaining:
        logger.warning(f"Overdrawn withdrawal: requested {qty}, remaining {remaining}")

    return WithdrawalResult(
        quantity=qty,
        value=value,
        cost_basis=cost_basis,
        realized_pnl=realized,
        remaining_qty=new_remaining,
        closed=closed,
    )


def close_lot(lot, on: date | None = None, actor: str | None = None) -> None:
    """
    Force-close a lot.

    Quantity still outstanding is written off: pnl is finalized as
    withdrawal_value - deposit_cost. An existing withdrawal_date is kept.
    """
    if on is not None and getattr(lot, "withdrawal_date", None) is None:
        lot.withdrawal_date = on
    if actor is not None:
        lot.closed_by = actor
    _finalize(lot)


def _finalize(lot) -> None:
    deposit_cost = lot.deposit_cost or ZERO
    lot.is_open = False
    lot.pnl = (lot.withdrawal_value or ZERO) - deposit_cost
    lot.pnl_percent = lot.pnl / deposit_cost * HUNDRED if deposit_cost > ZERO else ZERO
