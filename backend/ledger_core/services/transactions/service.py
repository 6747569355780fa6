# backend/ledger_core/services/transactions/service.py
"""
Transaction Service: the write path for ledger entries.

create_transaction() runs, in order:
1. Resolve whether the account is credit-style (Account.type)
2. Build the FX snapshot: supplied rates win, same-currency is 1, and any
   other missing rate is resolved ONCE from the quote collaborator
3. Validate, compute derived fields, persist
4. Optionally route the entry into the position engine

After step 2 nothing ever re-fetches a rate for this transaction:
recalculate_transaction() re-derives from the stored snapshot only.

Usage:
    service = TransactionService(quotes=QuoteService(), positions=PositionService())
    tx = service.create_transaction(db, TransactionInput(...), actor="alice")
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ledger_core.config import settings
from ledger_core.database import transactional
from ledger_core.models import Account, AccountType, Transaction, TransactionType
from ledger_core.services.constants import MAX_BATCH_SIZE, ONE, ZERO
from ledger_core.services.exceptions import (
    QuoteNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_core.services.positions.service import PositionService
from ledger_core.services.pricing.quotes import QuoteService
from ledger_core.services.transactions.derived import (
    DerivedFields,
    compute_derived_fields,
    parse_fx_snapshot,
    validate_transaction_input,
)
from ledger_core.utils.sql import escape_like_pattern

logger = logging.getLogger(__name__)

# Types routed into a position lot when track_position is set
DEPOSIT_LIKE_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.STAKE, TransactionType.BUY})
WITHDRAWAL_LIKE_TYPES = frozenset({TransactionType.WITHDRAW, TransactionType.UNSTAKE, TransactionType.SELL})


# =============================================================================
# INPUT / FILTER TYPES
# =============================================================================

@dataclass
class TransactionInput:
    """Raw fields of a new ledger entry, before snapshotting and derivation."""

    date: date | None
    type: TransactionType | str | None
    asset: str | None
    account: str | None
    quantity: Decimal | None
    price_local: Decimal | None
    local_currency: str | None = "USD"
    fee_local: Decimal = ZERO
    fx_rates: dict[str, Decimal] | None = None
    counterparty: str | None = None
    tag: str | None = None
    note: str | None = None
    internal_flow: bool = False
    horizon: str | None = None
    investment_id: int | None = None
    borrow_apr: Decimal | None = None
    borrow_term_days: int | None = None
    batch_id: str | None = None
    track_position: bool = False
    allow_overdraw: bool = False


@dataclass
class TransactionFilter:
    start_date: date | None = None
    end_date: date | None = None
    types: list[TransactionType] = field(default_factory=list)
    asset: str | None = None
    account: str | None = None
    tag: str | None = None
    counterparty: str | None = None
    investment_id: int | None = None
    batch_id: str | None = None
    search: str | None = None
    limit: int = 100
    offset: int = 0


# =============================================================================
# SERVICE
# =============================================================================

class TransactionService:
    """
    Creates, reads, recalculates and deletes ledger transactions.

    Args:
        quotes: Quote collaborator used to fill missing FX rates
        positions: Position engine for track_position entries
        reporting_currencies: Defaults to settings.reporting_currencies
    """

    def __init__(
            self,
            quotes: QuoteService | None = None,
            positions: PositionService | None = None,
            reporting_currencies: list[str] | None = None,
    ) -> None:
        self._quotes = quotes or QuoteService(fallback_days=settings.fx_fallback_days)
        self._positions = positions or PositionService()
        self._reporting_currencies = [
            c.upper() for c in (reporting_currencies or settings.reporting_currencies)
        ]

    @property
    def reporting_currencies(self) -> list[str]:
        return list(self._reporting_currencies)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_transaction(
            self,
            db: Session,
            data: TransactionInput,
            actor: str,
            commit: bool = True,
    ) -> Transaction:
        """
        Validate, snapshot, derive and persist one transaction.

        Raises:
            ValidationError: Malformed input or an FX rate that cannot be resolved
            PositionNotFoundError / InsufficientQuantityError: From position routing
        """
        with transactional(db, commit):
            tx = self._build_transaction(db, data, actor)
            db.add(tx)
            db.flush()

            if data.track_position:
                self._route_to_position(db, tx, data, actor)

        logger.info(
            f"Created transaction {tx.id}: {tx.type.value} {tx.quantity} {tx.asset} "
            f"@ {tx.account} cashflow_local={tx.cashflow_local}"
        )
        return tx

    def create_transactions_batch(
            self,
            db: Session,
            items: list[TransactionInput],
            actor: str,
            commit: bool = True,
    ) -> list[Transaction]:
        """
        Create several transactions as one unit: all are saved or none is.

        Items without a batch_id share a generated one.
        """
        if not items:
            raise ValidationError("batch is empty", field="transactions")
        if len(items) > MAX_BATCH_SIZE:
            raise ValidationError(f"batch exceeds {MAX_BATCH_SIZE} items", field="transactions")

        batch_id = uuid.uuid4().hex
        created: list[Transaction] = []

        with transactional(db, commit):
            for index, item in enumerate(items):
                if item.batch_id is None:
                    item = replace(item, batch_id=batch_id)
                try:
                    created.append(self.create_transaction(db, item, actor, commit=False))
                except ValidationError as e:
                    raise ValidationError(f"item {index}: {e.message}", field=e.field)

        logger.info(f"Created batch {batch_id} with {len(created)} transactions")
        return created

    # =========================================================================
    # READ
    # =========================================================================

    def get_transaction(self, db: Session, transaction_id: int) -> Transaction:
        tx = db.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def list_transactions(self, db: Session, filters: TransactionFilter | None = None) -> list[Transaction]:
        filters = filters or TransactionFilter()
        query = select(Transaction)

        if filters.start_date:
            query = query.where(Transaction.date >= filters.start_date)
        if filters.end_date:
            query = query.where(Transaction.date <= filters.end_date)
        if filters.types:
            query = query.where(Transaction.type.in_(filters.types))
        if filters.asset:
            query = query.where(Transaction.asset == filters.asset.upper())
        if filters.account:
            query = query.where(Transaction.account == filters.account)
        if filters.tag:
            query = query.where(Transaction.tag == filters.tag)
        if filters.counterparty:
            query = query.where(Transaction.counterparty == filters.counterparty)
        if filters.investment_id is not None:
            query = query.where(Transaction.investment_id == filters.investment_id)
        if filters.batch_id:
            query = query.where(Transaction.batch_id == filters.batch_id)
        if filters.search:
            pattern = f"%{escape_like_pattern(filters.search)}%"
            query = query.where(
                or_(
                    Transaction.note.ilike(pattern, escape="\\"),
                    Transaction.counterparty.ilike(pattern, escape="\\"),
                    Transaction.tag.ilike(pattern, escape="\\"),
                    Transaction.asset.ilike(pattern, escape="\\"),
                )
            )

        query = (
            query.order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        return list(db.scalars(query).all())

    # =========================================================================
    # RECALCULATE / DELETE
    # =========================================================================

    def recalculate_transaction(self, db: Session, transaction_id: int, commit: bool = True) -> Transaction:
        """
        Re-derive a stored transaction from its own snapshot.

        Never consults the quote collaborator, so running it any number of
        times gives the same stored figures.
        """
        with transactional(db, commit):
            tx = self.get_transaction(db, transaction_id)
            derived = compute_derived_fields(
                tx.quantity,
                tx.price_local,
                tx.fx_snapshot or {},
                tx.type,
                fee_local=tx.fee_local or ZERO,
                is_credit_account=self._is_credit_account(db, tx.account),
                internal_flow=bool(tx.internal_flow),
            )
            self._apply_derived(tx, derived)

        logger.debug(f"Recalculated transaction {transaction_id}")
        return tx

    def delete_transaction(self, db: Session, transaction_id: int, actor: str, commit: bool = True) -> None:
        with transactional(db, commit):
            tx = self.get_transaction(db, transaction_id)
            if tx.investment_id is not None:
                logger.warning(
                    f"Deleting transaction {transaction_id} linked to position {tx.investment_id}; "
                    f"the lot totals are not rewound"
                )
            db.delete(tx)

        logger.info(f"Transaction {transaction_id} deleted by {actor}")

    # =========================================================================
    # FX SNAPSHOT
    # =========================================================================

    def build_fx_snapshot(
            self,
            db: Session,
            local_currency: str,
            on: date,
            supplied: dict[str, Any] | None = None,
    ) -> dict[str, Decimal]:
        """
        Rates from the local currency into every reporting currency.

        Raises:
            ValidationError: A rate is neither supplied nor quotable
        """
        local = local_currency.upper()
        snapshot = parse_fx_snapshot(supplied)

        for currency in self._reporting_currencies:
            if currency in snapshot:
                continue
            if currency == local:
                snapshot[currency] = ONE
                continue
            try:
                quote = self._quotes.get_daily(db, local, currency, on)
            except QuoteNotFoundError:
                raise ValidationError(
                    f"No FX rate {local}/{currency} for {on}; supply fx_rates",
                    field="fx_snapshot",
                )
            if not quote.is_exact:
                logger.debug(f"FX {local}/{currency} for {on} taken from {quote.as_of}")
            snapshot[currency] = quote.price

        return snapshot

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _build_transaction(self, db: Session, data: TransactionInput, actor: str) -> Transaction:
        if data.date is None:
            raise ValidationError("date is required", field="date")
        if not data.local_currency:
            raise ValidationError("local currency is required", field="local_currency")

        fee_local = data.fee_local if data.fee_local is not None else ZERO
        snapshot = self.build_fx_snapshot(db, data.local_currency, data.date, data.fx_rates)

        validate_transaction_input(
            tx_date=data.date,
            tx_type=data.type.value if isinstance(data.type, TransactionType) else data.type,
            asset=data.asset,
            account=data.account,
            quantity=data.quantity,
            price_local=data.price_local,
            local_currency=data.local_currency,
            fx_snapshot=snapshot,
            reporting_currencies=self._reporting_currencies,
            fee_local=fee_local,
            horizon=data.horizon,
            borrow_apr=data.borrow_apr,
            borrow_term_days=data.borrow_term_days,
        )

        tx_type = TransactionType(data.type)
        derived = compute_derived_fields(
            data.quantity,
            data.price_local,
            snapshot,
            tx_type,
            fee_local=fee_local,
            is_credit_account=self._is_credit_account(db, data.account),
            internal_flow=data.internal_flow,
        )

        tx = Transaction(
            date=data.date,
            type=tx_type,
            asset=data.asset.strip().upper(),
            account=data.account.strip(),
            counterparty=data.counterparty,
            tag=data.tag,
            note=data.note,
            quantity=data.quantity,
            price_local=data.price_local,
            local_currency=data.local_currency.upper(),
            fee_local=fee_local,
            fx_snapshot={currency: str(rate) for currency, rate in snapshot.items()},
            internal_flow=data.internal_flow,
            horizon=data.horizon,
            investment_id=data.investment_id,
            batch_id=data.batch_id,
            borrow_apr=data.borrow_apr,
            borrow_term_days=data.borrow_term_days,
            created_by=actor,
        )
        self._apply_derived(tx, derived)
        return tx

    def _route_to_position(self, db: Session, tx: Transaction, data: TransactionInput, actor: str) -> None:
        if tx.type in DEPOSIT_LIKE_TYPES:
            self._positions.record_deposit(db, tx, actor, commit=False)
        elif tx.type in WITHDRAWAL_LIKE_TYPES:
            self._positions.record_withdrawal(
                db,
                tx,
                actor,
                investment_id=data.investment_id,
                allow_overdraw=data.allow_overdraw,
                commit=False,
            )
        else:
            raise ValidationError(
                f"{tx.type.value} transactions cannot be tracked as a position",
                field="track_position",
            )

    @staticmethod
    def _apply_derived(tx: Transaction, derived: DerivedFields) -> None:
        tx.amount_local = derived.amount_local
        tx.delta_qty = derived.delta_qty
        tx.cashflow_local = derived.cashflow_local
        tx.amounts = derived.amounts_json()
        tx.cashflows = derived.cashflows_json()

    @staticmethod
    def _is_credit_account(db: Session, account_name: str | None) -> bool:
        if not account_name:
            return False
        account_type = db.scalar(select(Account.type).where(Account.name == account_name.strip()))
        return account_type == AccountType.CREDIT_CARD
