# backend/ledger_core/services/positions/service.py
"""
Position Service: persistence around the cost-basis calculator.

Responsibilities:
- Route deposit-like transactions into the open lot for
  (asset, account, horizon), creating it on first deposit
- Route withdrawal-like transactions into a given or the first open lot
- Force-close and delete lots
- Read lots with their derived remaining quantity

Lot amounts are in the transaction's local currency:
    deposit cost     = amount_local + fee_local
    withdrawal value = amount_local - fee_local

Usage:
    service = PositionService()
    lot = service.record_deposit(db, tx, actor="alice")
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ledger_core.database import transactional
from ledger_core.models import CostBasisMethod, Investment, Transaction
from ledger_core.services.constants import ZERO
from ledger_core.services.exceptions import PositionNotFoundError, ValidationError
from ledger_core.services.positions.calculator import (
    WithdrawalResult,
    add_deposit,
    add_withdrawal,
    close_lot,
    remaining_quantity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionSummary:
    """
    Read view of a lot with its derived figures.

    realized_pnl is the headline pnl once closed and zero while the lot
    is open; partial-withdrawal P&L stays in realized_pnl_accrued.
    """

    position: Investment
    remaining_qty: Decimal
    realized_pnl: Decimal

    @classmethod
    def of(cls, position: Investment) -> "PositionSummary":
        return cls(
            position=position,
            remaining_qty=remaining_quantity(position),
            realized_pnl=ZERO if position.is_open else (position.pnl or ZERO),
        )


class PositionService:
    """Weighted-average position lots backed by the investments table."""

    # =========================================================================
    # WRITES
    # =========================================================================

    def record_deposit(
            self,
            db: Session,
            tx: Transaction,
            actor: str,
            cost_basis_method: CostBasisMethod = CostBasisMethod.AVERAGE,
            commit: bool = True,
    ) -> Investment:
        """
        Add a deposit-like transaction to its lot.

        Uses tx.investment_id when set, otherwise the open lot for
        (asset, account, horizon), otherwise a new lot.

        Raises:
            PositionNotFoundError: tx.investment_id references a missing lot
            ValidationError: The lot is closed, or quantity/cost is invalid
        """
        qty = abs(tx.quantity)
        cost = abs(tx.amount_local) + (tx.fee_local or ZERO)

        with transactional(db, commit):
            if tx.investment_id is not None:
                lot = self._get_or_raise(db, tx.investment_id)
                if not lot.is_open:
                    raise ValidationError(f"Position {lot.id} is closed", field="investment_id")
            else:
                lot = self.find_open_lot(db, tx.asset, tx.account, tx.horizon)

            if lot is None:
                lot = Investment(
                    asset=tx.asset,
                    account=tx.account,
                    horizon=tx.horizon,
                    deposit_date=tx.date,
                    deposit_qty=ZERO,
                    deposit_cost=ZERO,
                    deposit_unit_cost=ZERO,
                    withdrawal_qty=ZERO,
                    withdrawal_value=ZERO,
                    withdrawal_unit_price=ZERO,
                    realized_pnl_accrued=ZERO,
                    pnl=ZERO,
                    pnl_percent=ZERO,
                    is_open=True,
                    cost_basis_method=cost_basis_method,
                    created_by=actor,
                )
                add_deposit(lot, qty, cost, tx.date)
                db.add(lot)
                db.flush()
                logger.info(f"Opened position {lot.id} for {tx.asset}@{tx.account}: qty={qty}, cost={cost}")
            else:
                add_deposit(lot, qty, cost, tx.date)
                logger.info(
                    f"Deposit into position {lot.id}: qty={qty}, cost={cost}, "
                    f"unit_cost={lot.deposit_unit_cost}"
                )

            tx.investment_id = lot.id

        return lot

    def record_withdrawal(
            self,
            db: Session,
            tx: Transaction,
            actor: str,
            investment_id: int | None = None,
            allow_overdraw: bool = False,
            commit: bool = True,
    ) -> tuple[Investment, WithdrawalResult]:
        """
        Apply a withdrawal-like transaction to a lot.

        Raises:
            PositionNotFoundError: No such lot, or no open lot for (asset, account)
            InsufficientQuantityError: More than remaining without allow_overdraw
        """
        qty = abs(tx.quantity)
        value = abs(tx.amount_local) - (tx.fee_local or ZERO)
        if value < ZERO:
            value = ZERO

        with transactional(db, commit):
            lot_id = investment_id or tx.investment_id
            if lot_id is not None:
                lot = self._get_or_raise(db, lot_id)
                if not lot.is_open:
                    raise ValidationError(f"Position {lot.id} is closed", field="investment_id")
            else:
                lot = self.find_open_lot(db, tx.asset, tx.account, tx.horizon, match_horizon=False)
                if lot is None:
                    raise PositionNotFoundError(
                        message=f"No open position for {tx.asset} in {tx.account}",
                    )

            result = add_withdrawal(lot, qty, value, tx.date, allow_overdraw=allow_overdraw)
            if result.closed:
                lot.closed_by = actor
            tx.investment_id = lot.id

        logger.info(
            f"Withdrawal from position {lot.id}: qty={qty}, value={value}, "
            f"realized={result.realized_pnl}, remaining={result.remaining_qty}"
            + (" (closed)" if result.closed else "")
        )
        return lot, result

    def close_position(
            self,
            db: Session,
            position_id: int,
            actor: str,
            on: date | None = None,
            commit: bool = True,
    ) -> Investment:
        """
        Force-close a lot; outstanding quantity is written off.

        Closing an already closed lot returns it unchanged.
        """
        with transactional(db, commit):
            lot = self._get_or_raise(db, position_id)
            if not lot.is_open:
                return lot

            remaining = remaining_quantity(lot)
            close_lot(lot, on or date.today(), actor)

        if remaining > ZERO:
            logger.warning(f"Position {position_id} force-closed by {actor} with {remaining} outstanding")
        else:
            logger.info(f"Position {position_id} closed by {actor}: pnl={lot.pnl}")
        return lot

    def delete_position(self, db: Session, position_id: int, actor: str, commit: bool = True) -> int:
        """
        Delete a lot and every transaction linked to it.

        Returns:
            Number of linked transactions deleted
        """
        with transactional(db, commit):
            lot = self._get_or_raise(db, position_id)
            result = db.execute(delete(Transaction).where(Transaction.investment_id == lot.id))
            db.delete(lot)

        logger.info(f"Position {position_id} deleted by {actor} ({result.rowcount} transactions)")
        return result.rowcount

    # =========================================================================
    # READS
    # =========================================================================

    def get_position(self, db: Session, position_id: int) -> Investment:
        return self._get_or_raise(db, position_id)

    def list_positions(
            self,
            db: Session,
            asset: str | None = None,
            account: str | None = None,
            is_open: bool | None = None,
            limit: int = 100,
            offset: int = 0,
    ) -> list[Investment]:
        query = select(Investment)
        if asset:
            query = query.where(Investment.asset == asset.upper())
        if account:
            query = query.where(Investment.account == account)
        if is_open is not None:
            query = query.where(Investment.is_open == is_open)

        query = query.order_by(Investment.deposit_date.desc(), Investment.id.desc()).offset(offset).limit(limit)
        return list(db.scalars(query).all())

    def find_open_lot(
            self,
            db: Session,
            asset: str,
            account: str,
            horizon: str | None,
            match_horizon: bool = True,
    ) -> Investment | None:
        """
        Oldest open lot for (asset, account[, horizon]).

        A None horizon only matches lots without a horizon.
        """
        query = select(Investment).where(
            Investment.asset == asset,
            Investment.account == account,
            Investment.is_open.is_(True),
        )
        if match_horizon:
            if horizon is None:
                query = query.where(Investment.horizon.is_(None))
            else:
                query = query.where(Investment.horizon == horizon)

        return db.scalars(query.order_by(Investment.id).limit(1)).first()

    @staticmethod
    def _get_or_raise(db: Session, position_id: int) -> Investment:
        lot = db.get(Investment, position_id)
        if lot is None:
            raise PositionNotFoundError(position_id)
        return lot
