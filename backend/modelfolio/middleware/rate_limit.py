# backend/modelfolio/middleware/rate_limit.py
"""
Rate limiting for API protection (slowapi).

On-demand ingestion is the expensive call: each one fetches every symbol in
the registry from the quote provider, so it gets the tightest limit.
Limits are in services/constants.py.

Key by: Client IP address (X-Forwarded-For only from trusted proxies)
Storage: In-memory (single instance)

Usage:
    from modelfolio.middleware.rate_limit import limiter, RATE_LIMIT_WRITE

    @router.post("/{portfolio_id}/transactions/buy")
    @limiter.limit(RATE_LIMIT_WRITE)
    def buy(request: Request, ...):
        ...
"""

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from modelfolio.config import settings
from modelfolio.schemas.errors import ErrorDetail
from modelfolio.services.constants import (
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_HEALTH,
    RATE_LIMIT_INGEST,
    RATE_LIMIT_WRITE,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def _client_ip(request: Request) -> str:
    """
    Client address used as the rate limit key.

    Forwarded headers are honored only when the immediate peer is a trusted
    proxy, otherwise any client could pick its own key.
    """
    peer = get_remote_address(request)
    if settings.trust_proxy_headers or peer in settings.trusted_proxy_ips:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip
    return peer


limiter = Limiter(
    key_func=_client_ip,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=settings.rate_limit_enabled,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the common error format, with Retry-After."""
    limit_info = str(exc.detail) if exc.detail else "Rate limit exceeded"
    logger.warning(f"Rate limit exceeded for {_client_ip(request)}: {limit_info}")
    return JSONResponse(
        status_code=429,
        content=ErrorDetail(
            error="RateLimitExceeded",
            message=f"Too many requests. {limit_info}",
            details={"retry_after": RETRY_AFTER_SECONDS},
        ).model_dump(),
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


__all__ = [
    "limiter",
    "rate_limit_exceeded_handler",
    "RATE_LIMIT_DEFAULT",
    "RATE_LIMIT_HEALTH",
    "RATE_LIMIT_INGEST",
    "RATE_LIMIT_WRITE",
]
