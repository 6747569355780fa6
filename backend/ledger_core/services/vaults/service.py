# backend/ledger_core/services/vaults/service.py
"""
Vault Service: lifecycle, capital flows and pricing for vaults.

Responsibilities:
- Create, read and close vaults of either kind
- Deposits and withdrawals, enforcing status and limits
- Yield, fees and valuations (market mode)
- Manual pricing operations (tokenized vaults)
- Append a VaultTransaction with before/after figures for every mutation

Each public mutation loads the vault, validates, mutates and writes its
ledger row inside one transactional() block, so a rejected call leaves
the vault and its holdings unchanged.

Usage:
    service = VaultService()
    vault = service.create_vault(db, VaultInput(name="Growth"), actor="alice")
    result = service.deposit(db, vault.id, holder="alice", amount=Decimal("100"), actor="alice")
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_core.database import transactional
from ledger_core.models import (
    Vault,
    VaultKind,
    VaultShare,
    VaultStatus,
    VaultTransaction,
    VaultTransactionStatus,
    VaultTransactionType,
)
from ledger_core.services.constants import ONE, ZERO
from ledger_core.services.exceptions import (
    PricingModeError,
    ValidationError,
    VaultNotFoundError,
    VaultStateError,
)
from ledger_core.services.vaults import pricing
from ledger_core.services.vaults.models import VaultModel, model_for
from ledger_core.services.vaults.types import FlowResult, VaultInput, VaultSummary
from ledger_core.utils.date_utils import utc_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Before:
    aum: Decimal
    price: Decimal
    holder_shares: Decimal


class VaultService:
    """Vault aggregate operations. Every mutating method takes an explicit actor."""

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_vault(self, db: Session, data: VaultInput, actor: str, commit: bool = True) -> Vault:
        """
        Create a vault.

        With enable_manual_pricing the vault starts in manual mode at
        initial_share_price; initial_total_value then seeds the
        relative-growth baseline. For simple position vaults
        initial_total_value is booked as the opening contribution.

        Raises:
            ValidationError: Missing name/actor, duplicate name, bad limits
            PricingModeError: Manual pricing requested for a simple position vault
        """
        name = (data.name or "").strip()
        if not name:
            raise ValidationError("name is required", field="name")
        if not actor:
            raise ValidationError("actor is required", field="actor")
        if data.initial_share_price is None or data.initial_share_price <= ZERO:
            raise ValidationError("initial share price must be positive", field="initial_share_price")
        if data.min_deposit_amount < ZERO or data.min_withdrawal_amount < ZERO:
            raise ValidationError("minimum amounts cannot be negative", field="min_deposit_amount")
        if data.max_deposit_amount is not None and data.max_deposit_amount < data.min_deposit_amount:
            raise ValidationError("max deposit is below min deposit", field="max_deposit_amount")
        if data.initial_total_value is not None and data.initial_total_value <= ZERO:
            raise ValidationError("initial total value must be positive", field="initial_total_value")
        if data.enable_manual_pricing and data.kind == VaultKind.SIMPLE_POSITION:
            raise PricingModeError(None, data.kind.value, "Manual pricing is not available for simple position vaults")

        existing = db.scalars(select(Vault.id).where(Vault.name == name)).first()
        if existing is not None:
            raise ValidationError(f"Vault '{name}' already exists", field="name")

        with transactional(db, commit):
            vault = Vault(
                name=name,
                kind=data.kind,
                vault_type=data.vault_type,
                status=VaultStatus.ACTIVE,
                description=data.description,
                token_symbol=data.token_symbol.upper() if data.token_symbol else None,
                token_decimals=data.token_decimals,
                total_supply=ZERO,
                total_assets_under_management=ZERO,
                current_share_price=data.initial_share_price,
                initial_share_price=data.initial_share_price,
                high_watermark=data.initial_share_price,
                is_user_defined_price=False,
                total_contributed=ZERO,
                total_withdrawn=ZERO,
                min_deposit_amount=data.min_deposit_amount,
                max_deposit_amount=data.max_deposit_amount,
                min_withdrawal_amount=data.min_withdrawal_amount,
                is_deposit_allowed=data.is_deposit_allowed,
                is_withdrawal_allowed=data.is_withdrawal_allowed,
                inception_date=data.inception_date or utc_today(),
                created_by=actor,
            )
            db.add(vault)
            db.flush()

            if data.enable_manual_pricing:
                pricing.enable_manual_pricing(vault, data.initial_share_price, actor, "initial manual price")
                if data.initial_total_value is not None:
                    pricing.update_manual_total_value(vault, data.initial_total_value, ZERO, actor, "initial total value")
            elif data.initial_total_value is not None and vault.kind == VaultKind.SIMPLE_POSITION:
                vault.total_contributed = data.initial_total_value
                vault.total_assets_under_management = data.initial_total_value

        logger.info(f"Vault {vault.id} '{name}' created by {actor} (kind={vault.kind.value})")
        return vault

    def get_vault(self, db: Session, vault_id: int) -> Vault:
        return self._get_or_raise(db, vault_id)

    def list_vaults(
            self,
            db: Session,
            status: VaultStatus | None = None,
            kind: VaultKind | None = None,
            limit: int = 100,
            offset: int = 0,
    ) -> list[Vault]:
        query = select(Vault)
        if status is not None:
            query = query.where(Vault.status == status)
        if kind is not None:
            query = query.where(Vault.kind == kind)
        return list(db.scalars(query.order_by(Vault.id).offset(offset).limit(limit)).all())

    def close_vault(self, db: Session, vault_id: int, actor: str, commit: bool = True) -> Vault:
        """
        Close a vault. A tokenized vault must have no outstanding shares.

        Closing an already closed vault returns it unchanged.
        """
        self._require_actor(actor)
        with transactional(db, commit):
            vault = self._get_or_raise(db, vault_id)
            if vault.status == VaultStatus.CLOSED:
                return vault
            if vault.kind == VaultKind.TOKENIZED and (vault.total_supply or ZERO) > ZERO:
                raise VaultStateError(
                    vault.id,
                    f"Vault {vault.id} still has {vault.total_supply} shares outstanding",
                )
            vault.status = VaultStatus.CLOSED
            vault.is_deposit_allowed = False
            vault.is_withdrawal_allowed = False

        logger.info(f"Vault {vault_id} closed by {actor}")
        return vault

    # =========================================================================
    # CAPITAL FLOWS
    # =========================================================================

    def deposit(
            self,
            db: Session,
            vault_id: int,
            holder: str,
            amount: Decimal,
            actor: str,
            on: date | None = None,
            notes: str | None = None,
            commit: bool = True,
    ) -> FlowResult:
        """
        Deposit capital. Tokenized vaults mint amount / price shares to holder.

        Raises:
            ValidationError: amount <= 0, missing holder/actor
            VaultStateError: Vault not active, deposits disabled, or outside limits
        """
        self._require_actor(actor)
        if not holder:
            raise ValidationError("holder is required", field="holder")
        if amount is None or amount <= ZERO:
            raise ValidationError("amount must be positive", field="amount")

        with transactional(db, commit):
            vault = self._get_or_raise(db, vault_id)
            if vault.status != VaultStatus.ACTIVE or not vault.is_deposit_allowed:
                raise VaultStateError(vault.id, f"Vault {vault.id} is not accepting deposits")
            if amount < (vault.min_deposit_amount or ZERO):
                raise VaultStateError(vault.id, f"Deposit below minimum of {vault.min_deposit_amount}")
            if vault.max_deposit_amount is not None and amount > vault.max_deposit_amount:
                raise VaultStateError(vault.id, f"Deposit above maximum of {vault.max_deposit_amount}")

            model = model_for(vault)
            before = self._before(db, model, vault, holder)
            result = model.deposit(db, vault, holder, amount, on or utc_today())
            model.revalue_holdings(db, vault)
            self._append_ledger(
                db, model, vault, before, VaultTransactionType.DEPOSIT, actor,
                holder=holder, amount=amount, shares=result.shares,
                price_per_share=result.price_per_share, notes=notes,
            )

        logger.info(f"Vault {vault_id}: {holder} deposited {amount} ({result.shares} shares) by {actor}")
        return result

    def withdraw(
            self,
            db: Session,
            vault_id: int,
            holder: str,
            actor: str,
            amount: Decimal | None = None,
            shares: Decimal | None = None,
            on: date | None = None,
            notes: str | None = None,
            commit: bool = True,
    ) -> FlowResult:
        """
        Withdraw by amount or by shares (exactly one).

        Raises:
            ValidationError: Neither or both of amount/shares, non-positive values
            VaultStateError: Vault closed, withdrawals disabled, below minimum
            InsufficientSharesError: Holder does not own enough shares
        """
        self._require_actor(actor)
        if not holder:
            raise ValidationError("holder is required", field="holder")
        if (amount is None) == (shares is None):
            raise ValidationError("Provide exactly one of amount or shares", field="amount")
        if amount is not None and amount <= ZERO:
            raise ValidationError("amount must be positive", field="amount")
        if shares is not None and shares <= ZERO:
            raise ValidationError("shares must be positive", field="shares")

        with transactional(db, commit):
            vault = self._get_or_raise(db, vault_id)
            if vault.status == VaultStatus.CLOSED or not vault.is_withdrawal_allowed:
                raise VaultStateError(vault.id, f"Vault {vault.id} is not accepting withdrawals")

            model = model_for(vault)
            expected = amount if amount is not None else shares * model.price(vault)
            if expected < (vault.min_withdrawal_amount or ZERO):
                raise VaultStateError(vault.id, f"Withdrawal below minimum of {vault.min_withdrawal_amount}")

            before = self._before(db, model, vault, holder)
            result = model.withdraw(db, vault, holder, on or utc_today(), amount=amount, shares=shares)
            model.revalue_holdings(db, vault)
            self._append_ledger(
                db, model, vault, before, VaultTransactionType.WITHDRAWAL, actor,
                holder=holder, amount=result.amount, shares=result.shares,
                price_per_share=result.price_per_share, notes=notes,
            )

        logger.info(
            f"Vault {vault_id}: {holder} withdrew {result.amount} ({result.shares} shares), "
            f"realized={result.realized_pnl} by {actor}"
        )
        return result

    def record_yield(
            self,
            db: Session,
            vault_id: int,
            amount: Decimal,
            actor: str,
            notes: str | None = None,
            commit: bool = True,
    ) -> Vault:
        """Add yield to AUM. Tokenized vaults must be in market mode."""
        self._require_actor(actor)
        if amount is None or amount <= ZERO:
            raise ValidationError("yield amount must be positive", field="amount")

        with transactional(db, commit):
            vault = self._get_open_vault(db, vault_id)
            model = model_for(vault)
            before = self._before(db, model, vault, None)
            model.set_value(vault, (vault.total_assets_under_management or ZERO) + amount)
            model.revalue_holdings(db, vault)
            self._append_ledger(
                db, model, vault, before, VaultTransactionType.YIELD, actor,
                amount=amount, notes=notes,
            )

        logger.info(f"Vault {vault_id}: yield {amount} recorded by {actor}")
        return vault

    def record_fee(
            self,
            db: Session,
            vault_id: int,
            actor: str,
            fee_amount: Decimal | None = None,
            fee_rate: Decimal | None = None,
            fee_type: str | None = None,
            notes: str | None = None,
            commit: bool = True,
    ) -> Vault:
        """
        Charge a fee against AUM, either a fixed amount or fee_rate × AUM.

        Raises:
            ValidationError: Neither or both of amount/rate, rate outside (0, 1],
                fee larger than AUM
        """
        self._require_actor(actor)
        if (fee_amount is None) == (fee_rate is None):
            raise ValidationError("Provide exactly one of fee_amount or fee_rate", field="fee_amount")
        if fee_amount is not None and fee_amount <= ZERO:
            raise ValidationError("fee amount must be positive", field="fee_amount")
        if fee_rate is not None and not (ZERO < fee_rate <= ONE):
            raise ValidationError("fee rate must be in (0, 1]", field="fee_rate")

        with transactional(db, commit):
            vault = self._get_open_vault(db, vault_id)
            aum = vault.total_assets_under_management or ZERO
            fee = fee_amount if fee_amount is not None else aum * fee_rate
            if fee > aum:
                raise ValidationError(f"Fee {fee} exceeds vault value {aum}", field="fee_amount")

            model = model_for(vault)
            before = self._before(db, model, vault, None)
            model.set_value(vault, aum - fee)
            model.revalue_holdings(db, vault)
            self._append_ledger(
                db, model, vault, before, VaultTransactionType.FEE, actor,
                amount=fee, fee_amount=fee, fee_type=fee_type, fee_rate=fee_rate, notes=notes,
            )

        logger.info(f"Vault {vault_id}: fee {fee} ({fee_type or 'unspecified'}) recorded by {actor}")
        return vault

    def record_valuation(
            self,
            db: Session,
            vault_id: int,
            total_value: Decimal,
            actor: str,
            notes: str | None = None,
            commit: bool = True,
    ) -> Vault:
        """
        Set the vault's total value from a market valuation.

        Raises:
            PricingModeError: Vault is manually priced (use update_manual_total_value)
        """
        self._require_actor(actor)
        if total_value is None or total_value < ZERO:
            raise ValidationError("total value cannot be negative", field="total_value")

        with transactional(db, commit):
            vault = self._get_open_vault(db, vault_id)
            model = model_for(vault)
            before = self._before(db, model, vault, None)
            model.set_value(vault, total_value)
            model.revalue_holdings(db, vault)
            self._append_ledger(
                db, model, vault, before, VaultTransactionType.VALUATION, actor,
                amount=total_value, notes=notes,
            )

        logger.info(f"Vault {vault_id}: valued at {total_value} by {actor}")
        return vault

    # =========================================================================
    # MANUAL PRICING
    # =========================================================================

    def enable_manual_pricing(
            self,
            db: Session,
            vault_id: int,
            price: Decimal,
            actor: str,
            notes: str | None = None,
            commit: bool = True,
    ) -> Vault:
        return self._manual_pricing(
            db, vault_id, actor, commit, notes,
            lambda vault: pricing.enable_manual_pricing(vault, price, actor, notes),
            log=f"manual pricing enabled at {price}",
        )

    def update_manual_price(
            self,
            db: Session,
            vault_id: int,
            price: Decimal,
            actor: str,
            notes: str | None = None,
            commit: bool = True,
    ) -> Vault:
        def apply(vault: Vault) -> None:
            self._require_manual_mode(vault)
            pricing.update_manual_price(vault, price, actor, notes)

        return self._manual_pricing(db, vault_id, actor, commit, notes, apply, log=f"manual price set to {price}")

    def update_manual_total_value(
            self,
            db: Session,
            vault_id: int,
            total_value: Decimal,
            actor: str,
            net_contribution_delta: Decimal = ZERO,
            notes: str | None = None,
            commit: bool = True,
    ) -> Vault:
        return self._manual_pricing(
            db, vault_id, actor, commit, notes,
            lambda vault: pricing.update_manual_total_value(vault, total_value, net_contribution_delta, actor, notes),
            log=f"total value {total_value} (delta {net_contribution_delta})",
        )

    def disable_manual_pricing(self, db: Session, vault_id: int, actor: str, commit: bool = True) -> Vault:
        return self._manual_pricing(
            db, vault_id, actor, commit, None,
            lambda vault: pricing.disable_manual_pricing(vault, actor),
            log="manual pricing disabled",
        )

    def _manual_pricing(self, db: Session, vault_id: int, actor: str, commit: bool, notes, apply, log: str) -> Vault:
        self._require_actor(actor)
        with transactional(db, commit):
            vault = self._get_open_vault(db, vault_id)
            model = model_for(vault)
            model.require_manual_pricing_support(vault)
            before = self._before(db, model, vault, None)
            apply(vault)
            model.revalue_holdings(db, vault)
            self._append_ledger(
                db, model, vault, before, VaultTransactionType.MANUAL_PRICING, actor,
                amount=vault.total_assets_under_management, notes=notes,
            )

        logger.info(f"Vault {vault_id}: {log} by {actor}; price={vault.current_share_price}")
        return vault

    # =========================================================================
    # READS
    # =========================================================================

    def list_transactions(
            self,
            db: Session,
            vault_id: int,
            holder: str | None = None,
            types: list[VaultTransactionType] | None = None,
            limit: int = 100,
            offset: int = 0,
    ) -> list[VaultTransaction]:
        self._get_or_raise(db, vault_id)
        query = select(VaultTransaction).where(VaultTransaction.vault_id == vault_id)
        if holder:
            query = query.where(VaultTransaction.holder == holder)
        if types:
            query = query.where(VaultTransaction.type.in_(types))
        query = query.order_by(VaultTransaction.id.desc()).offset(offset).limit(limit)
        return list(db.scalars(query).all())

    def get_shares(self, db: Session, vault_id: int, holder: str | None = None) -> list[VaultShare]:
        self._get_or_raise(db, vault_id)
        query = select(VaultShare).where(VaultShare.vault_id == vault_id)
        if holder:
            query = query.where(VaultShare.holder == holder)
        return list(db.scalars(query.order_by(VaultShare.holder)).all())

    def get_summary(self, db: Session, vault_id: int) -> VaultSummary:
        vault = self._get_or_raise(db, vault_id)
        model = model_for(vault)
        holder_count = db.scalar(
            select(func.count(VaultShare.id)).where(
                VaultShare.vault_id == vault_id,
                VaultShare.share_balance > 0,
            )
        )
        return VaultSummary(
            vault=vault,
            share_price=model.price(vault),
            total_supply=vault.total_supply or ZERO,
            aum=vault.total_assets_under_management or ZERO,
            total_contributed=vault.total_contributed or ZERO,
            total_withdrawn=vault.total_withdrawn or ZERO,
            pnl=model.pnl(vault),
            performance_since_inception=(
                pricing.performance_since_inception(vault) if vault.kind == VaultKind.TOKENIZED else ZERO
            ),
            holder_count=holder_count or 0,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _require_actor(actor: str | None) -> None:
        if not actor:
            raise ValidationError("actor is required", field="actor")

    @staticmethod
    def _require_manual_mode(vault: Vault) -> None:
        if not vault.is_user_defined_price:
            raise PricingModeError(vault.id, "market", "Manual pricing is not enabled for this vault")

    @staticmethod
    def _get_or_raise(db: Session, vault_id: int) -> Vault:
        vault = db.get(Vault, vault_id)
        if vault is None:
            raise VaultNotFoundError(vault_id)
        return vault

    def _get_open_vault(self, db: Session, vault_id: int) -> Vault:
        vault = self._get_or_raise(db, vault_id)
        if vault.status == VaultStatus.CLOSED:
            raise VaultStateError(vault.id, f"Vault {vault.id} is closed")
        return vault

    @staticmethod
    def _before(db: Session, model: VaultModel, vault: Vault, holder: str | None) -> _Before:
        return _Before(
            aum=vault.total_assets_under_management or ZERO,
            price=model.price(vault),
            holder_shares=model.holder_shares(db, vault, holder),
        )

    @staticmethod
    def _append_ledger(
            db: Session,
            model: VaultModel,
            vault: Vault,
            before: _Before,
            tx_type: VaultTransactionType,
            actor: str,
            holder: str | None = None,
            amount: Decimal = ZERO,
            shares: Decimal = ZERO,
            price_per_share: Decimal | None = None,
            fee_amount: Decimal = ZERO,
            fee_type: str | None = None,
            fee_rate: Decimal | None = None,
            notes: str | None = None,
    ) -> VaultTransaction:
        now = datetime.now(timezone.utc)
        after_price = model.price(vault)
        entry = VaultTransaction(
            vault_id=vault.id,
            holder=holder,
            type=tx_type,
            status=VaultTransactionStatus.EXECUTED,
            amount=amount or ZERO,
            shares=shares or ZERO,
            price_per_share=price_per_share if price_per_share is not None else after_price,
            fee_amount=fee_amount or ZERO,
            fee_type=fee_type,
            fee_rate=fee_rate,
            vault_aum_before=before.aum,
            vault_aum_after=vault.total_assets_under_management or ZERO,
            share_price_before=before.price,
            share_price_after=after_price,
            user_shares_before=before.holder_shares,
            user_shares_after=model.holder_shares(db, vault, holder),
            timestamp=now,
            executed_at=now,
            notes=notes,
            created_by=actor,
        )
        db.add(entry)
        return entry
