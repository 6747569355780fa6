# backend/ledger_core/middleware/rate_limit.py
"""
Rate limiting with slowapi.

Limits live in ledger_core/services/constants.py:
- RATE_LIMIT_DEFAULT: reads
- RATE_LIMIT_WRITE: ledger and vault mutations
- RATE_LIMIT_BACKFILL: job creation (each job calls external providers)
- RATE_LIMIT_HEALTH: health probes

Key by: client IP (X-Forwarded-For only from trusted proxies)
Storage: in-memory

Usage:
    @router.post("/prices/backfill")
    @limiter.limit(RATE_LIMIT_BACKFILL)
    def create_backfill(request: Request, ...):
        ...
"""

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from ledger_core.config import settings
from ledger_core.services.constants import (
    RATE_LIMIT_BACKFILL,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_HEALTH,
    RATE_LIMIT_WRITE,
)

logger = logging.getLogger(__name__)


def _is_trusted_proxy(request: Request) -> bool:
    if settings.trust_proxy_headers:
        return True
    return get_remote_address(request) in settings.trusted_proxy_ips


def _get_client_ip(request: Request) -> str:
    """
    Client IP for rate-limit keys.

    Forwarded headers are only honoured from trusted proxies, so clients
    cannot spoof their way into another client's bucket.
    """
    if _is_trusted_proxy(request):
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

    return get_remote_address(request)


# =============================================================================
# LIMITER INSTANCE
# =============================================================================

limiter = Limiter(
    key_func=_get_client_ip,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=settings.rate_limit_enabled,
)


# =============================================================================
# RATE LIMIT EXCEEDED HANDLER
# =============================================================================

async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same error shape as every other API error."""
    retry_after = 60
    limit_info = str(exc.detail) if exc.detail else "Rate limit exceeded"

    logger.warning(f"Rate limit exceeded for {_get_client_ip(request)}: {limit_info}")

    return JSONResponse(
        status_code=429,
        content={
            "error": "RateLimitError",
            "kind": "rate_limited",
            "message": f"Too many requests. {limit_info}",
            "details": {"retry_after": retry_after},
        },
        headers={"Retry-After": str(retry_after)},
    )


__all__ = [
    "limiter",
    "rate_limit_exceeded_handler",
    "SlowAPIMiddleware",
    "RATE_LIMIT_DEFAULT",
    "RATE_LIMIT_WRITE",
    "RATE_LIMIT_BACKFILL",
    "RATE_LIMIT_HEALTH",
]
