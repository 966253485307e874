# backend/modelfolio/middleware/__init__.py
"""
ASGI middleware for the Modelfolio API.

Usage:
    from modelfolio.middleware import CorrelationIdMiddleware

    app.add_middleware(CorrelationIdMiddleware)
"""

from modelfolio.middleware.correlation import CorrelationIdMiddleware

__all__ = ["CorrelationIdMiddleware"]
