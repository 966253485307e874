# backend/modelfolio/services/market_data/__init__.py
"""
Market data package: quote providers, price ingestion and its scheduler.

Architecture:
    market_data/
    ├── base.py        # PriceQuoteProvider ABC, Quote, QuoteOk / QuoteErr
    ├── fetcher.py     # QuoteFetcher (timeout, retries, circuit breaker)
    ├── yahoo.py       # YahooQuoteProvider (yfinance)
    ├── ingestion.py   # PriceIngestionService, IngestionRunSummary
    └── scheduler.py   # PriceIngestionScheduler (asyncio tasks)
"""

from modelfolio.services.market_data.base import (
    PriceQuoteProvider,
    Quote,
    QuoteErr,
    QuoteOk,
    QuoteResult,
)
from modelfolio.services.market_data.fetcher import QuoteFetcher
from modelfolio.services.market_data.ingestion import (
    IngestionRunSummary,
    PriceIngestionService,
    SymbolFailure,
    UpdateType,
)
from modelfolio.services.market_data.scheduler import PriceIngestionScheduler, ScheduledJob
from modelfolio.services.market_data.yahoo import YahooQuoteProvider

__all__ = [
    "PriceQuoteProvider",
    "Quote",
    "QuoteOk",
    "QuoteErr",
    "QuoteResult",
    "QuoteFetcher",
    "YahooQuoteProvider",
    "PriceIngestionService",
    "IngestionRunSummary",
    "SymbolFailure",
    "UpdateType",
    "PriceIngestionScheduler",
    "ScheduledJob",
]
