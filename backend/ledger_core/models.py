# backend/ledger_core/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Text, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, Boolean, JSON, Integer, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Quantities and money share one column type: crypto needs 18 decimals
Amount = Numeric(30, 18)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, enum.Enum):
    CASH = "cash"
    BANK = "bank"
    CREDIT_CARD = "credit_card"
    EXCHANGE = "exchange"
    INVESTMENT = "investment"
    PEER = "peer"


class TransactionType(str, enum.Enum):
    """
    Ledger transaction types.

    The sign each type carries for quantity and cash-flow lives in
    services/transactions/derived.py.
    """
    BUY = "buy"
    SELL = "sell"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    INCOME = "income"
    EXPENSE = "expense"
    FEE = "fee"
    REWARD = "reward"
    AIRDROP = "airdrop"
    LEND = "lend"
    REPAY = "repay"
    INTEREST = "interest"
    BORROW = "borrow"
    REPAY_BORROW = "repay_borrow"
    INTEREST_EXPENSE = "interest_expense"
    STAKE = "stake"
    UNSTAKE = "unstake"
    VALUATION = "valuation"


class Horizon(str, enum.Enum):
    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"


class CostBasisMethod(str, enum.Enum):
    AVERAGE = "average"
    FIFO = "fifo"
    LIFO = "lifo"


class VaultKind(str, enum.Enum):
    """
    Aggregate variant of a vault.

    SIMPLE_POSITION tracks contributed capital and declared value only.
    TOKENIZED keeps a share ledger with minted/burned shares per holder.
    """
    SIMPLE_POSITION = "simple_position"
    TOKENIZED = "tokenized"


class VaultType(str, enum.Enum):
    SINGLE_ASSET = "single_asset"
    MULTI_ASSET = "multi_asset"
    YIELD_FARMING = "yield_farming"
    LIQUIDITY = "liquidity"
    STAKING = "staking"
    USER_DEFINED = "user_defined"


class VaultStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    LIQUIDATING = "liquidating"


class VaultTransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    MINT_SHARES = "mint_shares"
    BURN_SHARES = "burn_shares"
    REBALANCE = "rebalance"
    FEE = "fee"
    YIELD = "yield"
    INCOME = "income"
    EXPENSE = "expense"
    VALUATION = "valuation"
    MANUAL_PRICING = "manual_pricing"


class VaultTransactionStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PriceProvider(str, enum.Enum):
    HTTP = "http"
    YAHOO = "yahoo"


class PopulationStatus(str, enum.Enum):
    """
    Status values for price backfill jobs.

    State transitions:
        PENDING → RUNNING → COMPLETED
        PENDING → RUNNING → FAILED (fetch error or cancellation)

    COMPLETED and FAILED are terminal; retrying means creating a new job.
    A RUNNING job left behind by a process restart is resumed from its cursor.
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# MASTER DATA
# =============================================================================

class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    type: Mapped[AccountType] = mapped_column(Enum(AccountType), default=AccountType.CASH)
    currency: Mapped[str | None] = mapped_column(String(10))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Asset(Base):
    """Tradable or holdable asset, identified by its symbol (e.g. "BTC", "VND")."""
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255))
    decimals: Mapped[int] = mapped_column(Integer, default=8)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    price_mappings: Mapped[list["AssetPriceMapping"]] = relationship(
        back_populates="asset",
        cascade="all, delete-orphan",
    )


# =============================================================================
# LEDGER
# =============================================================================

class Transaction(Base):
    """
    One monetary event.

    Derived fields (amount_local, delta_qty, cashflow_local, amounts, cashflows)
    are computed once from the stored fx_snapshot. Reports read them back and
    never re-fetch a rate, so historical figures stay stable.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index('ix_transaction_asset_account', 'asset', 'account'),
        Index('ix_transaction_date_type', 'date', 'type'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    date: Mapped[date] = mapped_column(Date, index=True)
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), index=True)
    asset: Mapped[str] = mapped_column(String(50), index=True)
    account: Mapped[str] = mapped_column(String(100), index=True)
    counterparty: Mapped[str | None] = mapped_column(String(255))
    tag: Mapped[str | None] = mapped_column(String(255), index=True)
    note: Mapped[str | None] = mapped_column(Text)

    quantity: Mapped[Decimal] = mapped_column(Amount)
    price_local: Mapped[Decimal] = mapped_column(Amount)
    local_currency: Mapped[str] = mapped_column(String(10), default="USD")
    fee_local: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    # Snapshot: {"USD": "1", "VND": "25000"} rate from local currency per reporting currency
    fx_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)

    # Derived
    amount_local: Mapped[Decimal] = mapped_column(Amount)
    delta_qty: Mapped[Decimal] = mapped_column(Amount)
    cashflow_local: Mapped[Decimal] = mapped_column(Amount)
    amounts: Mapped[dict] = mapped_column(JSON, default=dict)
    cashflows: Mapped[dict] = mapped_column(JSON, default=dict)

    internal_flow: Mapped[bool] = mapped_column(Boolean, default=False)
    horizon: Mapped[str | None] = mapped_column(String(20), index=True)
    investment_id: Mapped[int | None] = mapped_column(ForeignKey("investments.id"), index=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), index=True)

    borrow_apr: Mapped[Decimal | None] = mapped_column(Numeric(10, 8))
    borrow_term_days: Mapped[int | None] = mapped_column(Integer)

    created_by: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    investment: Mapped["Investment | None"] = relationship(back_populates="transactions")


class Investment(Base):
    """
    A position lot: running aggregate of deposits and withdrawals for one
    (asset, account, horizon).

    remaining quantity = deposit_qty - withdrawal_qty. The headline pnl stays
    zero while the lot is open; realized_pnl_accrued keeps the per-withdrawal
    figures for reporting.
    """
    __tablename__ = "investments"
    __table_args__ = (
        Index('ix_investment_lookup', 'asset', 'account', 'horizon', 'is_open'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    asset: Mapped[str] = mapped_column(String(50), index=True)
    account: Mapped[str] = mapped_column(String(100), index=True)
    horizon: Mapped[str | None] = mapped_column(String(20))

    deposit_date: Mapped[date] = mapped_column(Date)
    deposit_qty: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    deposit_cost: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    deposit_unit_cost: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    withdrawal_date: Mapped[date | None] = mapped_column(Date)
    withdrawal_qty: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    withdrawal_value: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    withdrawal_unit_price: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    realized_pnl_accrued: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    pnl: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    pnl_percent: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    is_open: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    cost_basis_method: Mapped[CostBasisMethod] = mapped_column(Enum(CostBasisMethod), default=CostBasisMethod.AVERAGE)

    created_by: Mapped[str] = mapped_column(String(100))
    closed_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    transactions: Mapped[list["Transaction"]] = relationship(back_populates="investment")


# =============================================================================
# VAULTS
# =============================================================================

class Vault(Base):
    """
    A pooled investment vehicle.

    kind selects the variant (see services/vaults/models.py). In market mode
    AUM = total_supply * current_share_price. In manual mode the price is
    declared; manual_pricing_reference_aum/price carry the state the
    relative-growth rule needs across restarts.
    """
    __tablename__ = "vaults"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    kind: Mapped[VaultKind] = mapped_column(Enum(VaultKind), default=VaultKind.TOKENIZED)
    vault_type: Mapped[VaultType] = mapped_column(Enum(VaultType), default=VaultType.USER_DEFINED)
    status: Mapped[VaultStatus] = mapped_column(Enum(VaultStatus), default=VaultStatus.ACTIVE, index=True)
    description: Mapped[str | None] = mapped_column(Text)

    token_symbol: Mapped[str | None] = mapped_column(String(20))
    token_decimals: Mapped[int] = mapped_column(Integer, default=18)
    total_supply: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    total_assets_under_management: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    current_share_price: Mapped[Decimal] = mapped_column(Amount, default=Decimal("1"))
    initial_share_price: Mapped[Decimal] = mapped_column(Amount, default=Decimal("1"))
    high_watermark: Mapped[Decimal] = mapped_column(Amount, default=Decimal("1"))

    # Manual pricing sub-state
    is_user_defined_price: Mapped[bool] = mapped_column(Boolean, default=False)
    manual_price_per_share: Mapped[Decimal | None] = mapped_column(Amount)
    manual_pricing_reference_aum: Mapped[Decimal | None] = mapped_column(Amount)
    manual_pricing_reference_price: Mapped[Decimal | None] = mapped_column(Amount)
    price_last_updated_by: Mapped[str | None] = mapped_column(String(100))
    price_last_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    price_update_notes: Mapped[str | None] = mapped_column(Text)

    # Simple position totals
    total_contributed: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    total_withdrawn: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    # Limits
    min_deposit_amount: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    max_deposit_amount: Mapped[Decimal | None] = mapped_column(Amount)
    min_withdrawal_amount: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    is_deposit_allowed: Mapped[bool] = mapped_column(Boolean, default=True)
    is_withdrawal_allowed: Mapped[bool] = mapped_column(Boolean, default=True)

    inception_date: Mapped[date] = mapped_column(Date)
    created_by: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    shares: Mapped[list["VaultShare"]] = relationship(back_populates="vault", cascade="all, delete-orphan")
    ledger: Mapped[list["VaultTransaction"]] = relationship(
        back_populates="vault",
        cascade="all, delete-orphan",
        order_by="VaultTransaction.id",
    )


class VaultShare(Base):
    """Share holdings of one holder in one tokenized vault."""
    __tablename__ = "vault_shares"
    __table_args__ = (
        UniqueConstraint('vault_id', 'holder', name='uq_vault_share_holder'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    vault_id: Mapped[int] = mapped_column(ForeignKey("vaults.id"), index=True)
    holder: Mapped[str] = mapped_column(String(100), index=True)

    share_balance: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    cost_basis: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    avg_cost_per_share: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    total_deposits: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    total_withdrawals: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    net_deposits: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    current_market_value: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    unrealized_pnl: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    unrealized_pnl_percent: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    realized_pnl: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    fees_paid: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    first_deposit_date: Mapped[date | None] = mapped_column(Date)
    last_activity_date: Mapped[date | None] = mapped_column(Date)

    vault: Mapped["Vault"] = relationship(back_populates="shares")


class VaultTransaction(Base):
    """
    Append-only ledger entry against a vault.

    Before/after snapshots of AUM, share price and holder balance make the
    vault history reconstructable without replaying pricing logic.
    """
    __tablename__ = "vault_transactions"
    __table_args__ = (
        Index('ix_vault_transaction_vault_time', 'vault_id', 'timestamp'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    vault_id: Mapped[int] = mapped_column(ForeignKey("vaults.id"), index=True)
    holder: Mapped[str | None] = mapped_column(String(100), index=True)
    type: Mapped[VaultTransactionType] = mapped_column(Enum(VaultTransactionType), index=True)
    status: Mapped[VaultTransactionStatus] = mapped_column(
        Enum(VaultTransactionStatus), default=VaultTransactionStatus.PENDING
    )

    amount: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    shares: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    price_per_share: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    asset: Mapped[str | None] = mapped_column(String(50))
    account: Mapped[str | None] = mapped_column(String(100))
    asset_quantity: Mapped[Decimal | None] = mapped_column(Amount)
    asset_price: Mapped[Decimal | None] = mapped_column(Amount)

    fee_amount: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    fee_type: Mapped[str | None] = mapped_column(String(50))
    fee_rate: Mapped[Decimal | None] = mapped_column(Amount)

    vault_aum_before: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    vault_aum_after: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    share_price_before: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    share_price_after: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    user_shares_before: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    user_shares_after: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(100))

    vault: Mapped["Vault"] = relationship(back_populates="ledger")


# =============================================================================
# PRICES
# =============================================================================

class AssetPriceMapping(Base):
    """
    Where to fetch historical prices for an asset.

    For the HTTP provider, api_endpoint is a URL template and api_config holds
    {"method", "headers", "auth_type", "auth_value", "query_params"}.
    """
    __tablename__ = "asset_price_mappings"
    __table_args__ = (
        UniqueConstraint('asset_id', 'provider', 'quote_currency', name='uq_mapping_asset_provider_currency'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), index=True)
    provider: Mapped[PriceProvider] = mapped_column(Enum(PriceProvider))
    provider_id: Mapped[str] = mapped_column(String(100))
    quote_currency: Mapped[str] = mapped_column(String(10), default="USD")

    api_endpoint: Mapped[str | None] = mapped_column(Text)
    api_config: Mapped[dict | None] = mapped_column(JSON)
    response_path: Mapped[str | None] = mapped_column(String(255))

    auto_populate: Mapped[bool] = mapped_column(Boolean, default=False)
    populate_from_date: Mapped[date | None] = mapped_column(Date)
    last_populated_date: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    asset: Mapped["Asset"] = relationship(back_populates="price_mappings")


class AssetPrice(Base):
    """Price cache: at most one authoritative row per (symbol, currency, date)."""
    __tablename__ = "asset_prices"
    __table_args__ = (
        UniqueConstraint('symbol', 'currency', 'date', name='uq_asset_price_symbol_currency_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(50), index=True)
    currency: Mapped[str] = mapped_column(String(10))
    date: Mapped[date] = mapped_column(Date, index=True)
    price: Mapped[Decimal] = mapped_column(Amount)
    source: Mapped[str] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PricePopulationJob(Base):
    """
    A unit of backfill work for one mapping and date range.

    current_date is the last day processed; it is committed after every day
    so status reads reflect real progress and restarts resume from it.
    """
    __tablename__ = "price_population_jobs"
    __table_args__ = (
        Index('ix_population_job_asset_status', 'asset_id', 'status'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), index=True)
    mapping_id: Mapped[int] = mapped_column(ForeignKey("asset_price_mappings.id"), index=True)
    status: Mapped[PopulationStatus] = mapped_column(Enum(PopulationStatus), default=PopulationStatus.PENDING)

    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    # "current_date" is an SQL keyword, so the column gets a different name
    current_date: Mapped[date | None] = mapped_column("cursor_date", Date)
    total_days: Mapped[int] = mapped_column(Integer, default=0)
    completed_days: Mapped[int] = mapped_column(Integer, default=0)
    skipped_days: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    mapping: Mapped["AssetPriceMapping"] = relationship()
    asset: Mapped["Asset"] = relationship()
