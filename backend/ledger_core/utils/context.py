# backend/ledger_core/utils/context.py
"""
Request context management for Ledger Core.

Stores request-scoped data in contextvars so it follows the current request
(or background backfill task) through every call:
- Correlation ID for request tracing
- Arbitrary request metadata

Usage:
    from ledger_core.utils.context import get_correlation_id, set_correlation_id

    # In middleware or at the start of a background task
    set_correlation_id("abc-123")

    # Anywhere else
    correlation_id = get_correlation_id()  # "abc-123"
"""

from contextvars import ContextVar
from typing import Any

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_request_context_var: ContextVar[dict[str, Any] | None] = ContextVar("request_context", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID for the current request or task.

    Args:
        correlation_id: Unique identifier for this unit of work
    """
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID at the end of a request or task."""
    _correlation_id_var.set(None)


# =============================================================================
# EXTENDED CONTEXT
# =============================================================================

def get_request_context() -> dict[str, Any]:
    """Return a copy of the request context dictionary."""
    return dict(_request_context_var.get() or {})


def set_request_context(key: str, value: Any) -> None:
    """Set a value in the request context."""
    ctx = get_request_context()
    ctx[key] = value
    _request_context_var.set(ctx)


def clear_request_context() -> None:
    """Clear all request context."""
    _request_context_var.set(None)
