# backend/ledger_core/services/constants.py
"""
Centralized constants for the Ledger Core services.

Single source of truth for decimal literals, rate limits and resource
limits used across the application.

Usage:
    from ledger_core.services.constants import (
        ZERO,
        HUNDRED,
        RATE_LIMIT_WRITE,
    )
"""

from decimal import Decimal


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

# Type-safe Decimal literals for comparisons and arithmetic
ZERO: Decimal = Decimal("0")
ONE: Decimal = Decimal("1")
HUNDRED: Decimal = Decimal("100")


# =============================================================================
# PRICING DEFAULTS
# =============================================================================

# Default JSON path for the HTTP price provider response
DEFAULT_RESPONSE_PATH: str = "price"

# Cancellation message recorded on a backfill job
JOB_CANCELLED_MESSAGE: str = "cancelled"


# =============================================================================
# RATE LIMITING CONSTANTS
# =============================================================================
# Limits are expressed as "X per Y" where Y is the time window
# Format follows slowapi/limits syntax: "100/minute", "10/hour", etc.

# Default rate limit for read endpoints (GET requests)
RATE_LIMIT_DEFAULT: str = "100/minute"

# Rate limit for write endpoints (POST, DELETE)
RATE_LIMIT_WRITE: str = "30/minute"

# Rate limit for backfill endpoints (trigger external API calls)
RATE_LIMIT_BACKFILL: str = "10/minute"

# Rate limit for health check endpoints
RATE_LIMIT_HEALTH: str = "300/minute"


# =============================================================================
# RESOURCE LIMIT CONSTANTS
# =============================================================================

# Maximum number of items in a single batch request
MAX_BATCH_SIZE: int = 500

# Maximum number of items returned in a single list response
MAX_LIST_LIMIT: int = 1000

# Maximum date range for one backfill job (days)
MAX_BACKFILL_DAYS: int = 365 * 20 + 5
