# backend/ledger_core/services/actions/service.py
"""
Action Service: expands one predefined action into ledger transactions.

| Action            | Transactions written                                   |
|-------------------|--------------------------------------------------------|
| spend             | expense                                                |
| credit_spend      | expense on a credit card account                       |
| spot_buy          | buy base, sell quote, optional fee rows                |
| borrow            | borrow                                                 |
| repay_borrow      | repay_borrow                                           |
| stake             | transfer_out (internal), stake into a lot, fee         |
| unstake           | unstake from a lot, transfer_in (internal)             |
| init_balance      | deposit                                                |
| internal_transfer | transfer_out + transfer_in, both internal              |

Every action is one unit of work: if any generated transaction is
rejected, nothing is saved.

Usage:
    result = ActionService().perform(db, SpendAction(...), actor="alice")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_core.database import transactional
from ledger_core.models import Account, AccountType, Investment, Transaction, TransactionType
from ledger_core.services.actions.configs import (
    ActionBase,
    BorrowAction,
    CreditSpendAction,
    InitBalanceAction,
    InternalTransferAction,
    RepayBorrowAction,
    SpendAction,
    SpotBuyAction,
    StakeAction,
    UnstakeAction,
)
from ledger_core.services.constants import HUNDRED, ONE, ZERO
from ledger_core.services.exceptions import QuoteNotFoundError, ValidationError
from ledger_core.services.positions.service import PositionService
from ledger_core.services.pricing.quotes import QuoteService
from ledger_core.services.transactions.service import TransactionInput, TransactionService

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    action: str
    transactions: list[Transaction] = field(default_factory=list)
    position: Investment | None = None
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ActionService:
    """
    Runs predefined actions through TransactionService.

    Args:
        transactions: Write path for generated entries
        positions: Position engine (unstake close_all)
        quotes: Price lookups for spot_buy and unstake when no price is given
    """

    def __init__(
            self,
            transactions: TransactionService | None = None,
            positions: PositionService | None = None,
            quotes: QuoteService | None = None,
    ) -> None:
        self._positions = positions or PositionService()
        self._quotes = quotes or QuoteService()
        self._transactions = transactions or TransactionService(quotes=self._quotes, positions=self._positions)
        self._handlers = {
            SpendAction: self._spend,
            CreditSpendAction: self._credit_spend,
            SpotBuyAction: self._spot_buy,
            BorrowAction: self._borrow,
            RepayBorrowAction: self._repay_borrow,
            StakeAction: self._stake,
            UnstakeAction: self._unstake,
            InitBalanceAction: self._init_balance,
            InternalTransferAction: self._internal_transfer,
        }

    def perform(self, db: Session, config: ActionBase, actor: str) -> ActionResult:
        """
        Validate and execute one action.

        Raises:
            ValidationError: Config fails cross-field or database checks
            Any error raised by TransactionService / PositionService
        """
        if not actor:
            raise ValidationError("actor is required", field="actor")
        handler = self._handlers.get(type(config))
        if handler is None:
            raise ValidationError(f"Unsupported action {type(config).__name__}", field="action")

        config.check_rules()
        result = ActionResult(action=config.action)

        with transactional(db):
            handler(db, config, actor, result)

        logger.info(
            f"Action {config.action} by {actor} created {len(result.transactions)} transactions: "
            f"{[tx.id for tx in result.transactions]}"
        )
        return result

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _spend(self, db: Session, config: SpendAction, actor: str, result: ActionResult) -> None:
        if self._account_type(db, config.account) == AccountType.CREDIT_CARD:
            raise ValidationError(
                f"{config.account} is a credit card account; use credit_spend",
                field="account",
            )
        self._add(db, result, actor, self._cash_entry(config, TransactionType.EXPENSE))

    def _credit_spend(self, db: Session, config: CreditSpendAction, actor: str, result: ActionResult) -> None:
        if self._account_type(db, config.account) != AccountType.CREDIT_CARD:
            raise ValidationError(f"{config.account} is not a credit card account", field="account")
        self._add(db, result, actor, self._cash_entry(config, TransactionType.EXPENSE))

    def _spot_buy(self, db: Session, config: SpotBuyAction, actor: str, result: ActionResult) -> None:
        price = config.price_quote
        if price is None:
            try:
                price = self._quotes.get_daily(db, config.base_asset, config.quote_asset, config.date).price
            except QuoteNotFoundError as e:
                raise ValidationError(
                    f"price_quote not given and no price available: {e.message}",
                    field="price_quote",
                )

        common = dict(
            date=config.date,
            account=config.exchange_account,
            local_currency=config.quote_asset,
            fx_rates=config.fx_rates,
            counterparty=config.counterparty,
            tag=config.tag,
            note=config.note,
        )
        spent = config.quantity * price

        self._add(db, result, actor, TransactionInput(
            type=TransactionType.BUY, asset=config.base_asset,
            quantity=config.quantity, price_local=price, **common,
        ))
        self._add(db, result, actor, TransactionInput(
            type=TransactionType.SELL, asset=config.quote_asset,
            quantity=spent, price_local=ONE, **common,
        ))

        fee_quote = config.fee_quote or ZERO
        if config.fee_percent:
            fee_quote = spent * config.fee_percent / HUNDRED
        if config.fee_base and config.fee_base > ZERO:
            self._add(db, result, actor, TransactionInput(
                type=TransactionType.FEE, asset=config.base_asset,
                quantity=config.fee_base, price_local=price, **common,
            ))
        if fee_quote > ZERO:
            self._add(db, result, actor, TransactionInput(
                type=TransactionType.FEE, asset=config.quote_asset,
                quantity=fee_quote, price_local=ONE, **common,
            ))

    def _borrow(self, db: Session, config: BorrowAction, actor: str, result: ActionResult) -> None:
        entry = self._asset_entry(config, TransactionType.BORROW, config.account, config.amount)
        entry.borrow_apr = config.borrow_apr
        entry.borrow_term_days = config.borrow_term_days
        self._add(db, result, actor, entry)

    def _repay_borrow(self, db: Session, config: RepayBorrowAction, actor: str, result: ActionResult) -> None:
        self._add(db, result, actor, self._asset_entry(config, TransactionType.REPAY_BORROW, config.account, config.amount))

    def _stake(self, db: Session, config: StakeAction, actor: str, result: ActionResult) -> None:
        fee_qty = config.amount * config.fee_percent / HUNDRED if config.fee_percent else ZERO
        net = config.amount - fee_qty

        out = self._asset_entry(config, TransactionType.TRANSFER_OUT, config.source_account, net)
        out.internal_flow = True
        out.horizon = config.horizon
        self._add(db, result, actor, out)

        stake = self._asset_entry(config, TransactionType.STAKE, config.investment_account, net)
        stake.internal_flow = True
        stake.horizon = config.horizon
        stake.track_position = True
        stake_tx = self._add(db, result, actor, stake)
        result.position = db.get(Investment, stake_tx.investment_id)

        if fee_qty > ZERO:
            self._add(db, result, actor, self._asset_entry(config, TransactionType.FEE, config.source_account, fee_qty))

    def _unstake(self, db: Session, config: UnstakeAction, actor: str, result: ActionResult) -> None:
        exit_price = config.exit_price
        if exit_price is None:
            quote = self._quotes.get_daily_or_none(db, config.asset, config.local_currency, config.date)
            exit_price = quote.price if quote is not None else config.price_local

        withdraw = self._asset_entry(config, TransactionType.UNSTAKE, config.investment_account, config.amount)
        withdraw.price_local = exit_price
        withdraw.internal_flow = True
        withdraw.track_position = True
        withdraw.investment_id = config.investment_id
        unstake_tx = self._add(db, result, actor, withdraw)

        deposit = self._asset_entry(config, TransactionType.TRANSFER_IN, config.destination_account, config.amount)
        deposit.price_local = exit_price
        deposit.internal_flow = True
        self._add(db, result, actor, deposit)

        position = db.get(Investment, unstake_tx.investment_id)
        if config.close_all and position is not None and position.is_open:
            position = self._positions.close_position(db, position.id, actor, on=config.date, commit=False)
        result.position = position

    def _init_balance(self, db: Session, config: InitBalanceAction, actor: str, result: ActionResult) -> None:
        entry = self._asset_entry(config, TransactionType.DEPOSIT, config.account, config.quantity)
        entry.horizon = config.horizon
        self._add(db, result, actor, entry)

    def _internal_transfer(self, db: Session, config: InternalTransferAction, actor: str, result: ActionResult) -> None:
        out = self._asset_entry(config, TransactionType.TRANSFER_OUT, config.source_account, config.quantity)
        out.internal_flow = True
        self._add(db, result, actor, out)

        incoming = self._asset_entry(config, TransactionType.TRANSFER_IN, config.destination_account, config.quantity)
        incoming.internal_flow = True
        self._add(db, result, actor, incoming)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _add(self, db: Session, result: ActionResult, actor: str, entry: TransactionInput) -> Transaction:
        tx = self._transactions.create_transaction(db, entry, actor, commit=False)
        result.transactions.append(tx)
        return tx

    @staticmethod
    def _cash_entry(config: SpendAction, tx_type: TransactionType) -> TransactionInput:
        return TransactionInput(
            date=config.date,
            type=tx_type,
            asset=config.currency,
            account=config.account,
            quantity=config.amount,
            price_local=ONE,
            local_currency=config.currency,
            fx_rates=config.fx_rates,
            counterparty=config.counterparty,
            tag=config.tag,
            note=config.note,
        )

    @staticmethod
    def _asset_entry(config, tx_type: TransactionType, account: str, quantity: Decimal) -> TransactionInput:
        return TransactionInput(
            date=config.date,
            type=tx_type,
            asset=config.asset,
            account=account,
            quantity=quantity,
            price_local=config.price_local,
            local_currency=config.local_currency,
            fx_rates=config.fx_rates,
            counterparty=config.counterparty,
            tag=config.tag,
            note=config.note,
        )

    @staticmethod
    def _account_type(db: Session, account_name: str) -> AccountType | None:
        return db.scalar(select(Account.type).where(Account.name == account_name.strip()))
