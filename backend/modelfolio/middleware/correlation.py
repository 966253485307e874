# backend/modelfolio/middleware/correlation.py
"""
Correlation ID middleware for request tracing.

Correlation ID sources (in order of precedence):
1. X-Correlation-ID header (from client or upstream service)
2. X-Request-ID header
3. Generated UUID if neither header is present

The ID is set for the duration of the request, so log lines written while
handling it (including a valuation or on-demand ingestion it triggers)
carry it, and it is returned in the X-Correlation-ID response header.

Client usage:
    curl -H "X-Correlation-ID: my-trace-123" http://localhost:8000/health
"""

from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from modelfolio.utils.context import correlation_scope

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Sets a correlation ID per request and echoes it in the response."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response],
    ) -> Response:
        incoming = (
            request.headers.get(CORRELATION_ID_HEADER)
            or request.headers.get(REQUEST_ID_HEADER)
        )
        with correlation_scope(correlation_id=incoming) as correlation_id:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
