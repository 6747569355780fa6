# backend/ledger_core/services/vaults/__init__.py
"""
Vault share-pricing engine.

Usage:
    from ledger_core.services.vaults import VaultService, VaultInput

    service = VaultService()
    vault = service.create_vault(db, VaultInput(name="Growth"), actor="alice")
    service.enable_manual_pricing(db, vault.id, Decimal("1"), actor="alice")
    service.update_manual_total_value(db, vault.id, Decimal("120"), actor="alice")
"""

from ledger_core.services.vaults.models import (
    SimplePositionModel,
    TokenizedVaultModel,
    VaultModel,
    model_for,
)
from ledger_core.services.vaults.service import VaultService
from ledger_core.services.vaults.shares import BurnResult, burn_shares, mark_to_market, mint_shares, total_return
from ledger_core.services.vaults.types import FlowResult, VaultInput, VaultSummary

__all__ = [
    "VaultService",
    "VaultInput",
    "VaultSummary",
    "FlowResult",
    "VaultModel",
    "TokenizedVaultModel",
    "SimplePositionModel",
    "model_for",
    "BurnResult",
    "mint_shares",
    "burn_shares",
    "mark_to_market",
    "total_return",
]
