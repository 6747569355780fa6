# backend/ledger_core/services/positions/__init__.py
"""
Position/cost-basis engine.

Usage:
    from ledger_core.services.positions import PositionService

    service = PositionService()
    lot = service.record_deposit(db, tx, actor="alice")
"""

from ledger_core.services.positions.calculator import (
    WithdrawalResult,
    add_deposit,
    add_withdrawal,
    close_lot,
    remaining_quantity,
)
from ledger_core.services.positions.service import PositionService, PositionSummary

__all__ = [
    "PositionService",
    "PositionSummary",
    "WithdrawalResult",
    "add_deposit",
    "add_withdrawal",
    "close_lot",
    "remaining_quantity",
]
