# backend/ledger_core/middleware/correlation.py
"""
Correlation ID middleware for request tracing.

Correlation ID sources (in order of precedence):
1. X-Correlation-ID header
2. X-Request-ID header
3. Generated UUID

The ID is stored in context for the log formatter and echoed back in the
X-Correlation-ID response header. Backfill workers set their own ID
("backfill-job-<id>") so job logs can be filtered the same way.
"""

import logging
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ledger_core.utils.context import (
    clear_correlation_id,
    clear_request_context,
    set_correlation_id,
)

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to every request and response."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response],
    ) -> Response:
        correlation_id = self._get_correlation_id(request)
        set_correlation_id(correlation_id)

        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response

        finally:
            clear_request_context()
            clear_correlation_id()

    @staticmethod
    def _get_correlation_id(request: Request) -> str:
        return (
            request.headers.get(CORRELATION_ID_HEADER)
            or request.headers.get(REQUEST_ID_HEADER)
            or str(uuid.uuid4())
        )
