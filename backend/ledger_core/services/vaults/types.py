# backend/ledger_core/services/vaults/types.py
"""Input and result types for the vault service."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_core.models import Vault, VaultKind, VaultType
from ledger_core.services.constants import ONE, ZERO


@dataclass
class VaultInput:
    """Everything needed to create a vault."""

    name: str
    kind: VaultKind = VaultKind.TOKENIZED
    vault_type: VaultType = VaultType.USER_DEFINED
    description: str | None = None
    token_symbol: str | None = None
    token_decimals: int = 18
    initial_share_price: Decimal = ONE
    min_deposit_amount: Decimal = ZERO
    max_deposit_amount: Decimal | None = None
    min_withdrawal_amount: Decimal = ZERO
    is_deposit_allowed: bool = True
    is_withdrawal_allowed: bool = True
    inception_date: date | None = None
    enable_manual_pricing: bool = False
    initial_total_value: Decimal | None = None


@dataclass(frozen=True)
class FlowResult:
    """Outcome of a deposit or withdrawal."""

    amount: Decimal
    shares: Decimal
    price_per_share: Decimal
    realized_pnl: Decimal = ZERO


@dataclass(frozen=True)
class VaultSummary:
    vault: Vault
    share_price: Decimal
    total_supply: Decimal
    aum: Decimal
    total_contributed: Decimal
    total_withdrawn: Decimal
    pnl: Decimal
    performance_since_inception: Decimal
    holder_count: int
