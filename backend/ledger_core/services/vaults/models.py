# backend/ledger_core/services/vaults/models.py
"""
Vault variants.

A vault is one aggregate tagged by Vault.kind. Each kind gets a
VaultModel that knows how capital flows and valuations change it:

    TokenizedVaultModel    share ledger; deposits mint, withdrawals burn
    SimplePositionModel    contributed capital and declared value only

Models mutate ORM objects in memory; the service owns the session and the
transaction around them.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_core.models import Vault, VaultKind, VaultShare
from ledger_core.services.constants import ZERO
from ledger_core.services.exceptions import (
    InsufficientSharesError,
    PricingModeError,
    ValidationError,
    VaultStateError,
)
from ledger_core.services.vaults import pricing, shares as share_math
from ledger_core.services.vaults.types import FlowResult

logger = logging.getLogger(__name__)


class VaultModel(ABC):
    """Behavior shared by every vault kind."""

    kind: VaultKind

    @property
    @abstractmethod
    def supports_manual_pricing(self) -> bool:
        pass

    @abstractmethod
    def deposit(self, db: Session, vault: Vault, holder: str, amount: Decimal, on: date) -> FlowResult:
        pass

    @abstractmethod
    def withdraw(
            self,
            db: Session,
            vault: Vault,
            holder: str,
            on: date,
            amount: Decimal | None = None,
            shares: Decimal | None = None,
    ) -> FlowResult:
        pass

    @abstractmethod
    def set_value(self, vault: Vault, aum: Decimal) -> None:
        """Apply a new total value from yield, fees or a valuation."""
        pass

    def require_manual_pricing_support(self, vault: Vault) -> None:
        if not self.supports_manual_pricing:
            raise PricingModeError(
                vault.id,
                vault.kind.value,
                f"Manual pricing is not available for {vault.kind.value} vaults",
            )

    def price(self, vault: Vault) -> Decimal:
        return pricing.effective_price(vault)

    def holder_shares(self, db: Session, vault: Vault, holder: str | None) -> Decimal:
        return ZERO

    def revalue_holdings(self, db: Session, vault: Vault) -> None:
        pass

    def pnl(self, vault: Vault) -> Decimal:
        """AUM + withdrawn - contributed"""
        return (
            (vault.total_assets_under_management or ZERO)
            + (vault.total_withdrawn or ZERO)
            - (vault.total_contributed or ZERO)
        )


# =============================================================================
# TOKENIZED
# =============================================================================

class TokenizedVaultModel(VaultModel):
    kind = VaultKind.TOKENIZED

    @property
    def supports_manual_pricing(self) -> bool:
        return True

    def deposit(self, db: Session, vault: Vault, holder: str, amount: Decimal, on: date) -> FlowResult:
        price = self.price(vault)
        if not price or price <= ZERO:
            raise VaultStateError(vault.id, f"Vault {vault.id} has no usable share price")

        minted = pricing.shares_for_amount(vault, amount)
        holding = self._get_holding(db, vault, holder, create=True)
        share_math.mint_shares(holding, minted, price, on)

        vault.total_supply = (vault.total_supply or ZERO) + minted
        vault.total_contributed = (vault.total_contributed or ZERO) + amount
        if vault.is_user_defined_price:
            vault.total_assets_under_management = vault.total_supply * price
        else:
            vault.total_assets_under_management = (vault.total_assets_under_management or ZERO) + amount

        return FlowResult(amount=amount, shares=minted, price_per_share=price)

    def withdraw(
            self,
            db: Session,
            vault: Vault,
            holder: str,
            on: date,
            amount: Decimal | None = None,
            shares: Decimal | None = None,
    ) -> FlowResult:
        price = self.price(vault)
        if shares is None:
            if not price or price <= ZERO:
                raise VaultStateError(vault.id, f"Vault {vault.id} has no usable share price")
            shares = pricing.shares_for_amount(vault, amount)

        holding = self._get_holding(db, vault, holder, create=False)
        if holding is None:
            raise InsufficientSharesError(shares, ZERO)

        burned = share_math.burn_shares(holding, shares, price, on)

        vault.total_supply = (vault.total_supply or ZERO) - shares
        vault.total_withdrawn = (vault.total_withdrawn or ZERO) + burned.proceeds
        remaining_aum = (vault.total_assets_under_management or ZERO) - burned.proceeds
        vault.total_assets_under_management = remaining_aum if remaining_aum > ZERO else ZERO

        return FlowResult(
            amount=burned.proceeds,
            shares=shares,
            price_per_share=price,
            realized_pnl=burned.realized_pnl,
        )

    def set_value(self, vault: Vault, aum: Decimal) -> None:
        pricing.apply_market_valuation(vault, aum)

    def holder_shares(self, db: Session, vault: Vault, holder: str | None) -> Decimal:
        if holder is None:
            return ZERO
        holding = self._get_holding(db, vault, holder, create=False)
        return holding.share_balance if holding is not None else ZERO

    def revalue_holdings(self, db: Session, vault: Vault) -> None:
        price = self.price(vault)
        for holding in vault.shares:
            share_math.mark_to_market(holding, price)

    @staticmethod
    def _get_holding(db: Session, vault: Vault, holder: str, create: bool) -> VaultShare | None:
        holding = db.scalars(
            select(VaultShare).where(VaultShare.vault_id == vault.id, VaultShare.holder == holder)
        ).first()
        if holding is None and create:
            holding = VaultShare(
                vault_id=vault.id,
                holder=holder,
                share_balance=ZERO,
                cost_basis=ZERO,
                avg_cost_per_share=ZERO,
                total_deposits=ZERO,
                total_withdrawals=ZERO,
                net_deposits=ZERO,
                current_market_value=ZERO,
                unrealized_pnl=ZERO,
                unrealized_pnl_percent=ZERO,
                realized_pnl=ZERO,
                fees_paid=ZERO,
            )
            vault.shares.append(holding)
            db.flush()
            logger.debug(f"Opened holding for {holder} in vault {vault.id}")
        return holding


# =============================================================================
# SIMPLE POSITION
# =============================================================================

class SimplePositionModel(VaultModel):
    kind = VaultKind.SIMPLE_POSITION

    @property
    def supports_manual_pricing(self) -> bool:
        return False

    def deposit(self, db: Session, vault: Vault, holder: str, amount: Decimal, on: date) -> FlowResult:
        vault.total_contributed = (vault.total_contributed or ZERO) + amount
        vault.total_assets_under_management = (vault.total_assets_under_management or ZERO) + amount
        return FlowResult(amount=amount, shares=ZERO, price_per_share=ZERO)

    def withdraw(
            self,
            db: Session,
            vault: Vault,
            holder: str,
            on: date,
            amount: Decimal | None = None,
            shares: Decimal | None = None,
    ) -> FlowResult:
        if shares is not None:
            raise ValidationError(
                "Simple position vaults have no shares; withdraw by amount",
                field="shares",
            )

        aum = vault.total_assets_under_management or ZERO
        if amount > aum:
            raise VaultStateError(vault.id, f"Cannot withdraw {amount}: vault value is {aum}")

        vault.total_withdrawn = (vault.total_withdrawn or ZERO) + amount
        vault.total_assets_under_management = aum - amount
        return FlowResult(amount=amount, shares=ZERO, price_per_share=ZERO)

    def set_value(self, vault: Vault, aum: Decimal) -> None:
        if aum is None or aum < ZERO:
            raise ValidationError("AUM cannot be negative", field="total_value")
        vault.total_assets_under_management = aum

    def price(self, vault: Vault) -> Decimal:
        return ZERO


_MODELS: dict[VaultKind, VaultModel] = {
    VaultKind.TOKENIZED: TokenizedVaultModel(),
    VaultKind.SIMPLE_POSITION: SimplePositionModel(),
}


def model_for(vault: Vault) -> VaultModel:
    return _MODELS[vault.kind]
