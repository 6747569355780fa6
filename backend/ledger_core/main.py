# backend/ledger_core/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application
- Registers global exception handlers
- Registers all routers
- Defines global endpoints (health checks)
- Resumes interrupted backfill jobs at startup and stops the worker pool at shutdown
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from ledger_core.config import settings
from ledger_core.database import SessionLocal, check_database_health, get_db
from ledger_core.dependencies import get_backfill_pool, get_backfill_service
from ledger_core.routers import (
    actions_router,
    positions_router,
    prices_router,
    reports_router,
    transactions_router,
    vaults_router,
)
from ledger_core.schemas.errors import ErrorDetail, ValidationErrorDetail
from ledger_core.services.exceptions import (
    DomainInvariantError,
    InsufficientQuantityError,
    InsufficientSharesError,
    MarketDataError,
    NotFoundError,
    ProviderUnavailableError,
    QuoteNotFoundError,
    RateLimitError,
    ServiceError,
    TickerNotFoundError,
    ValidationError,
)
from ledger_core.utils import setup_logging

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP (must be before app creation)
# =============================================================================

setup_logging()


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.backfill_resume_on_startup and not settings.is_test:
        db = SessionLocal()
        try:
            get_backfill_service().resume_interrupted_jobs(db, get_backfill_pool())
        finally:
            db.close()

    yield

    # Only stop a pool that was actually started
    if get_backfill_pool.cache_info().currsize:
        get_backfill_pool().shutdown(wait=False, cancel_running=True)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Personal finance ledger: transactions, position lots, share-priced vaults and price backfill",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# =============================================================================
# MIDDLEWARE (order matters: last added = first executed)
# =============================================================================

from slowapi.errors import RateLimitExceeded
from ledger_core.middleware import (
    CorrelationIdMiddleware,
    limiter,
    rate_limit_exceeded_handler,
    SlowAPIMiddleware,
    RATE_LIMIT_HEALTH,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Service exceptions carry no HTTP knowledge; each family maps to one
# status code and one stable `kind`. Starlette picks the most specific
# handler along the exception's MRO.
# =============================================================================

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _error(status_code: int, exc: Exception, kind: str, details: dict | None = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(
            error=type(exc).__name__,
            kind=kind,
            message=str(exc),
            details=details,
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle service-level validation errors (400)."""
    logger.warning(f"Validation error on {request.url.path}: {exc}")
    return _error(400, exc, "validation", {"field": exc.field})


@app.exception_handler(DomainInvariantError)
async def domain_invariant_handler(request: Request, exc: DomainInvariantError) -> JSONResponse:
    """Handle rejected operations that would break an aggregate invariant (409)."""
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    details: dict = {"rule": exc.rule}
    if isinstance(exc, (InsufficientQuantityError, InsufficientSharesError)):
        details["requested"] = str(exc.requested)
        details["available"] = str(exc.available)
    for attr in ("vault_id", "job_id", "mode", "status"):
        value = getattr(exc, attr, None)
        if value is not None:
            details[attr] = value.value if hasattr(value, "value") else value
    return _error(409, exc, "domain_invariant", details)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle missing resources (404)."""
    logger.warning(f"Not found: {exc}")
    return _error(404, exc, "not_found", {
        "resource_type": exc.resource_type,
        "resource_id": exc.resource_id,
    })


@app.exception_handler(QuoteNotFoundError)
async def quote_not_found_handler(request: Request, exc: QuoteNotFoundError) -> JSONResponse:
    """Handle a pair with no cached quote in the fallback window (404)."""
    logger.info(f"Quote not found: {exc}")
    return _error(404, exc, "not_found", {
        "symbol": exc.symbol,
        "currency": exc.currency,
        "date": exc.date.isoformat() if exc.date else None,
    })


@app.exception_handler(TickerNotFoundError)
async def ticker_not_found_handler(request: Request, exc: TickerNotFoundError) -> JSONResponse:
    """Handle symbols unknown to the provider (404)."""
    logger.warning(f"Ticker not found on provider: {exc.symbol}")
    return _error(404, exc, "external", {"symbol": exc.symbol, "provider": exc.provider})


@app.exception_handler(RateLimitError)
async def provider_rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    """Handle provider rate limits (429)."""
    logger.warning(f"Provider rate limit exceeded: {exc}")
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    return _error(429, exc, "external", {"provider": exc.provider, "retry_after": exc.retry_after}, headers)


@app.exception_handler(ProviderUnavailableError)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError) -> JSONResponse:
    """Handle price provider outages (503)."""
    logger.error(f"Provider unavailable: {exc}")
    return _error(503, exc, "external", {"provider": exc.provider, "reason": exc.reason})


@app.exception_handler(MarketDataError)
async def market_data_error_handler(request: Request, exc: MarketDataError) -> JSONResponse:
    """Handle any other price provider error (502)."""
    logger.error(f"Market data error: {exc}")
    return _error(502, exc, "external", {"provider": exc.provider})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Catch-all for service errors without a dedicated handler (500)."""
    logger.error(f"Unhandled service error: {type(exc).__name__}: {exc}")
    return _error(500, exc, "internal")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle all HTTPExceptions with consistent error format.

    Converts FastAPI's default {"detail": "..."} format to ErrorDetail.
    """
    error_types = {
        400: ("BadRequestError", "validation"),
        404: ("NotFoundError", "not_found"),
        405: ("MethodNotAllowedError", "validation"),
        409: ("ConflictError", "domain_invariant"),
        422: ("ValidationError", "validation"),
        429: ("RateLimitError", "rate_limited"),
        503: ("ServiceUnavailableError", "external"),
    }
    error_type, kind = error_types.get(exc.status_code, ("HTTPError", "internal"))

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorDetail(
            error=error_type,
            kind=kind,
            message=str(exc.detail) if exc.detail else "An error occurred",
            details=None,
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with consistent format.

    Converts the default 422 validation error to ValidationErrorDetail.
    """
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content=ValidationErrorDetail(details=errors).model_dump(),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(transactions_router)  # /transactions/*
app.include_router(actions_router)  # /actions
app.include_router(positions_router)  # /positions/*
app.include_router(vaults_router)  # /vaults/*
app.include_router(prices_router)  # /prices/*
app.include_router(reports_router)  # /reports/*


# =============================================================================
# GLOBAL ENDPOINTS
# =============================================================================

@app.get("/", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def root(request: Request):
    """API root - returns basic application info."""
    return {
        "message": f"Welcome to {settings.app_name}!",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Health of all dependencies.

    **Response Status Codes:**
    - 200: Healthy, or a non-critical component degraded
    - 503: Database unreachable
    """
    checks = {}
    critical_healthy = True
    overall_status = "healthy"

    # Database (CRITICAL)
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy", "critical": True}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {"status": "unhealthy", "critical": True, "error": str(e)}
        critical_healthy = False
        overall_status = "unhealthy"

    # Backfill worker pool (NON-CRITICAL); not started until first use
    if get_backfill_pool.cache_info().currsize:
        pool = get_backfill_pool()
        checks["backfill_pool"] = {
            "status": "unhealthy" if pool.closed else "healthy",
            "critical": False,
            "active_jobs": len(pool.active_jobs()),
            "max_workers": settings.backfill_max_workers,
        }
        if pool.closed and overall_status == "healthy":
            overall_status = "degraded"
    else:
        checks["backfill_pool"] = {"status": "idle", "critical": False}

    response_data = {"status": overall_status, "checks": checks}
    if not critical_healthy:
        return JSONResponse(status_code=503, content=response_data)
    return response_data


@app.get("/health/live", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def liveness_check(request: Request):
    """Liveness probe. Always succeeds while the process is alive."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def readiness_check(request: Request):
    """Readiness probe: 503 when the database is unavailable."""
    database = check_database_health()
    if database["status"] != "healthy":
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "error": "Database unavailable"},
        )
    return {"status": "ready", "database": database}
