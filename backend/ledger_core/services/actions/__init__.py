# backend/ledger_core/services/actions/__init__.py
"""Predefined actions expanded into ledger transactions."""

from ledger_core.services.actions.configs import (
    ActionBase,
    ActionConfig,
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
from ledger_core.services.actions.service import ActionResult, ActionService

__all__ = [
    "ActionBase",
    "ActionConfig",
    "ActionResult",
    "ActionService",
    "BorrowAction",
    "CreditSpendAction",
    "InitBalanceAction",
    "InternalTransferAction",
    "RepayBorrowAction",
    "SpendAction",
    "SpotBuyAction",
    "StakeAction",
    "UnstakeAction",
]
