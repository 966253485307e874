# backend/modelfolio/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application
- Starts / stops the price ingestion scheduler with the application
- Adds the correlation ID and rate limiting middleware
- Registers global exception handlers
- Registers all routers
- Defines global endpoints (health check)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import Session

from modelfolio.config import settings
from modelfolio.database import check_database_health, get_db
from modelfolio.dependencies import get_scheduler
from modelfolio.middleware import CorrelationIdMiddleware
from modelfolio.middleware.rate_limit import RATE_LIMIT_HEALTH, limiter, rate_limit_exceeded_handler
from modelfolio.routers import calculation_logs_router, portfolios_router, prices_router
from modelfolio.schemas.errors import ErrorDetail, ValidationErrorDetail
from modelfolio.services.exceptions import (
    AlreadyClosedError,
    CircuitBreakerOpen,
    ConcurrentModificationError,
    HoldingNotFoundError,
    InsufficientCashError,
    InvalidQuantityError,
    MarketDataError,
    NotFoundError,
    PortfolioNotFoundError,
    PriceUnavailableError,
    ProviderUnavailableError,
    RateLimitError,
    ServiceError,
    SymbolNotFoundError,
    TickerNotFoundError,
    ValidationError,
)
from modelfolio.services.market_data.scheduler import PriceIngestionScheduler
from modelfolio.utils import setup_logging

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
    scheduler = get_scheduler() if settings.scheduler_enabled else None
    if scheduler is not None:
        scheduler.start()
    else:
        logger.info("Price ingestion scheduler disabled (SCHEDULER_ENABLED=false)")
    yield
    if scheduler is not None:
        await scheduler.stop()


# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Model portfolio valuation, transactions and price ingestion API",
    version="0.1.0",
    lifespan=lifespan,
)

# Attach limiter to app state (required by slowapi)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Service exceptions carry a machine-readable ``code``; it becomes the
# ``error`` field of the response. The status is looked up along the
# exception's class hierarchy, most specific class first.
# =============================================================================

_STATUS_BY_ERROR: dict[type[ServiceError], int] = {
    ValidationError: 400,
    InvalidQuantityError: 400,
    InsufficientCashError: 400,
    NotFoundError: 404,
    TickerNotFoundError: 404,
    AlreadyClosedError: 409,
    ConcurrentModificationError: 409,
    PriceUnavailableError: 422,
    RateLimitError: 429,
    MarketDataError: 502,
    ProviderUnavailableError: 503,
}


def _status_for(exc: ServiceError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


def _details_for(exc: ServiceError) -> dict | None:
    if isinstance(exc, InsufficientCashError):
        return {"required": str(exc.required), "available": str(exc.available)}
    if isinstance(exc, InvalidQuantityError):
        return {"requested": exc.requested, "held": exc.held}
    if isinstance(exc, (AlreadyClosedError, PriceUnavailableError)):
        return {"symbol": exc.symbol}
    if isinstance(exc, HoldingNotFoundError):
        return {"portfolio_id": exc.portfolio_id, "symbol": exc.symbol}
    if isinstance(exc, PortfolioNotFoundError):
        return {"portfolio_id": exc.portfolio_id}
    if isinstance(exc, SymbolNotFoundError):
        return {"ticker": exc.ticker, "exchange": exc.exchange}
    if isinstance(exc, ConcurrentModificationError):
        return {"portfolio_id": exc.portfolio_id, "attempts": exc.attempts}
    if isinstance(exc, ValidationError):
        return {"field": exc.field} if exc.field else None
    if isinstance(exc, RateLimitError):
        return {"retry_after": exc.retry_after} if exc.retry_after else None
    return None


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle every service-layer error with its mapped status."""
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code}: {exc}")
    else:
        logger.warning(f"{exc.code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(
            error=exc.code,
            message=str(exc),
            details=_details_for(exc),
        ).model_dump(),
    )


@app.exception_handler(CircuitBreakerOpen)
async def circuit_breaker_handler(request: Request, exc: CircuitBreakerOpen) -> JSONResponse:
    """Handle circuit breaker open (503 with Retry-After)."""
    logger.warning(f"Circuit breaker open: {exc.breaker_name}")
    retry_after = int(exc.time_remaining) + 1  # Round up
    return JSONResponse(
        status_code=503,
        content=ErrorDetail(
            error=exc.code,
            message=f"Service temporarily unavailable. The {exc.breaker_name} circuit breaker is open.",
            details={
                "breaker_name": exc.breaker_name,
                "retry_after": retry_after,
            },
        ).model_dump(),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors with consistent format.

    Converts the default 422 validation error to our ValidationErrorDetail format.
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
        content=ValidationErrorDetail(
            error="ValidationError",
            message="Request validation failed",
            details=errors,
        ).model_dump(),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(portfolios_router)  # /portfolios/*
app.include_router(prices_router)  # /prices/*
app.include_router(calculation_logs_router)  # /calculation-logs


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def health_check(
        request: Request,
        db: Session = Depends(get_db),
        scheduler: PriceIngestionScheduler = Depends(get_scheduler),
):
    """
    Health check endpoint.

    Returns HTTP 503 if the database is unreachable. An open price provider
    circuit breaker only degrades the status.
    """
    checks = {}
    overall_status = "healthy"

    checks["database"] = {**check_database_health(db), "critical": True}
    if checks["database"]["status"] != "healthy":
        return JSONResponse(status_code=503, content={"status": "unhealthy", "checks": checks})

    breaker = scheduler.ingestion.fetcher.breaker
    checks["price_provider"] = {
        "status": "unhealthy" if breaker.is_open else "healthy",
        "critical": False,
        "circuit_breaker_state": breaker.state.value,
        "rejected_calls": breaker.rejected_calls,
    }
    if breaker.is_open:
        overall_status = "degraded"

    checks["scheduler"] = {
        "enabled": settings.scheduler_enabled,
        "running": scheduler.is_running,
    }

    return {"status": overall_status, "checks": checks}
