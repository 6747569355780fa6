# backend/ledger_core/services/backfill/__init__.py
"""
Historical price backfill.

Usage:
    from ledger_core.services.backfill import BackfillService, BackfillWorkerPool
"""

from ledger_core.services.backfill.service import BackfillService, MappingInput, default_registry
from ledger_core.services.backfill.worker import BackfillTask, BackfillWorkerPool

__all__ = [
    "BackfillService",
    "BackfillTask",
    "BackfillWorkerPool",
    "MappingInput",
    "default_registry",
]
