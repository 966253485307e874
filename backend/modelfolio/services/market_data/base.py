# backend/modelfolio/services/market_data/base.py
"""
Abstract interface for price quote providers.

This module defines the contract every quote provider follows and the tagged
result type the rest of the system consumes. Using an abstract base class
allows for:
- Swapping the quote source without touching ingestion
- Fake implementations for testing
- One retry/timeout policy (QuoteFetcher) for every provider

Design Principles:
- Providers raise MarketDataError subclasses and never retry themselves
- Retry, timeout and circuit breaking live in QuoteFetcher
- Callers get QuoteOk | QuoteErr, never an ad hoc response shape
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Quote:
    """
    Last traded price of a symbol as returned by a provider.

    Attributes:
        price: Last traded price (> 0)
        as_of: When the provider observed the price
    """

    price: Decimal
    as_of: datetime


@dataclass(frozen=True)
class QuoteOk:
    """Successful fetch. ``attempts`` counts the calls it took (1 = first try)."""

    price: Decimal
    as_of: datetime
    attempts: int = 1

    ok = True


@dataclass(frozen=True)
class QuoteErr:
    """Failed fetch after all attempts. ``reason`` is the last error message."""

    reason: str
    attempts: int = 0

    ok = False


QuoteResult = QuoteOk | QuoteErr


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class PriceQuoteProvider(ABC):
    """
    Abstract base class for price quote providers.

    Implementations must be safe to call repeatedly for the same symbol
    (fetches are retried) and must not block the event loop; blocking
    client libraries are run with ``asyncio.to_thread``.

    Raises (from fetch):
        TickerNotFoundError: Permanent, the provider doesn't know the symbol
        ProviderUnavailableError: Transient, network or server failure
        RateLimitError: Transient, provider throttling
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used in logs and errors (e.g. "yahoo")."""
        ...

    @abstractmethod
    async def fetch(self, ticker: str, exchange: str) -> Quote:
        """
        Fetch the last traded price of one symbol.

        Args:
            ticker: Symbol ticker (e.g. "SUPRIYA")
            exchange: Exchange code (e.g. "NSE")

        Returns:
            Quote
        """
        ...

    async def is_available(self) -> bool:
        """
        Check whether the provider can be reached at all.

        Default implementation returns True. An ingestion run checks this
        once before fetching and aborts if it returns False.
        """
        return True
