# backend/modelfolio/routers/__init__.py
"""
API routers.

Each router handles a specific domain:
- portfolios: Valuation, buy/sell transactions and value history
- prices: On-demand price ingestion and scheduler status
- calculation_logs: Valuation calculation trace
"""

from modelfolio.routers.calculation_logs import router as calculation_logs_router
from modelfolio.routers.portfolios import router as portfolios_router
from modelfolio.routers.prices import router as prices_router

__all__ = [
    "calculation_logs_router",
    "portfolios_router",
    "prices_router",
]
