# backend/ledger_core/routers/__init__.py
"""
API routers for Ledger Core.

Each router handles a specific domain:
- transactions: Ledger entries with derived amounts and FX snapshots
- actions: Predefined multi-transaction actions (spend, stake, ...)
- positions: Weighted-average position lots
- vaults: Share-priced vaults and simple positions
- prices: Price mappings, backfill jobs and cached quotes
- reports: Read-only holdings, cash-flow and P&L
"""

from ledger_core.routers.actions import router as actions_router
from ledger_core.routers.positions import router as positions_router
from ledger_core.routers.prices import router as prices_router
from ledger_core.routers.reports import router as reports_router
from ledger_core.routers.transactions import router as transactions_router
from ledger_core.routers.vaults import router as vaults_router

__all__ = [
    "transactions_router",
    "actions_router",
    "positions_router",
    "vaults_router",
    "prices_router",
    "reports_router",
]
