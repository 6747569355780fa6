# backend/ledger_core/services/reporting/service.py
"""
Reporting Service: read-only aggregates over the ledger.

- holdings: net quantity per (asset, account) from delta_qty
- cashflow_summary: inflow/outflow/net from each transaction's stored
  cashflows snapshot, with a per-type breakdown
- position_pnl: realized P&L of closed lots and cost basis of open lots

Reports read stored snapshots only; no quote is fetched and nothing is
written.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_core.models import Investment, Transaction
from ledger_core.services.constants import ZERO
from ledger_core.services.exceptions import ValidationError
from ledger_core.services.positions.calculator import remaining_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Holding:
    asset: str
    account: str
    quantity: Decimal


@dataclass
class CashflowSummary:
    currency: str
    start_date: date | None
    end_date: date | None
    inflow: Decimal = ZERO
    outflow: Decimal = ZERO
    by_type: dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.inflow + self.outflow


@dataclass
class PositionPnL:
    realized_pnl: Decimal = ZERO
    open_cost_basis: Decimal = ZERO
    open_positions: int = 0
    closed_positions: int = 0
    by_asset: dict[str, Decimal] = field(default_factory=dict)


class ReportingService:
    """Read-only reports. Never mutates state."""

    def holdings(self, db: Session, as_of: date | None = None, include_zero: bool = False) -> list[Holding]:
        query = select(
            Transaction.asset,
            Transaction.account,
            func.sum(Transaction.delta_qty),
        ).group_by(Transaction.asset, Transaction.account)
        if as_of is not None:
            query = query.where(Transaction.date <= as_of)

        rows = db.execute(query.order_by(Transaction.asset, Transaction.account)).all()
        holdings = [
            Holding(asset=asset, account=account, quantity=Decimal(str(qty or 0)))
            for asset, account, qty in rows
        ]
        if not include_zero:
            holdings = [h for h in holdings if h.quantity != ZERO]
        return holdings

    def cashflow_summary(
            self,
            db: Session,
            start: date | None = None,
            end: date | None = None,
            currency: str = "USD",
    ) -> CashflowSummary:
        """
        Sum stored cash-flows in one reporting currency.

        Raises:
            ValidationError: start after end
        """
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end", field="start")

        currency = currency.upper()
        query = select(Transaction.type, Transaction.cashflows)
        if start is not None:
            query = query.where(Transaction.date >= start)
        if end is not None:
            query = query.where(Transaction.date <= end)

        summary = CashflowSummary(currency=currency, start_date=start, end_date=end)
        by_type: dict[str, Decimal] = defaultdict(lambda: ZERO)
        missing = 0

        for tx_type, cashflows in db.execute(query).all():
            value = (cashflows or {}).get(currency)
            if value is None:
                missing += 1
                continue
            amount = Decimal(str(value))
            summary.transaction_count += 1
            by_type[tx_type.value] += amount
            if amount > ZERO:
                summary.inflow += amount
            elif amount < ZERO:
                summary.outflow += amount

        if missing:
            logger.debug(f"{missing} transactions have no {currency} cash-flow snapshot")

        summary.by_type = dict(by_type)
        return summary

    def position_pnl(self, db: Session) -> PositionPnL:
        report = PositionPnL()
        by_asset: dict[str, Decimal] = defaultdict(lambda: ZERO)

        for lot in db.scalars(select(Investment)).all():
            if lot.is_open:
                report.open_positions += 1
                remaining = remaining_quantity(lot)
                if remaining > ZERO:
                    report.open_cost_basis += remaining * (lot.deposit_unit_cost or ZERO)
            else:
                report.closed_positions += 1
                report.realized_pnl += lot.pnl or ZERO
                by_asset[lot.asset] += lot.pnl or ZERO

        report.by_asset = dict(by_asset)
        return report
