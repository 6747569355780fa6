# backend/ledger_core/utils/__init__.py
"""
Utility modules for Ledger Core.

Cross-cutting utilities used throughout the application:
- logging: Logging configuration with correlation ID support
- context: Request context (correlation ID, actor)
- date_utils: Calendar-day ranges for backfill
- sql: Dialect-aware upsert and LIKE escaping

Usage:
    from ledger_core.utils import setup_logging
    from ledger_core.utils import get_correlation_id, set_correlation_id
    from ledger_core.utils.date_utils import iter_days
"""

from ledger_core.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    get_request_context,
    set_request_context,
    clear_request_context,
)
from ledger_core.utils.logging import setup_logging
from ledger_core.utils.sql import escape_like_pattern, upsert_insert

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "get_request_context",
    "set_request_context",
    "clear_request_context",
    # SQL
    "escape_like_pattern",
    "upsert_insert",
]
