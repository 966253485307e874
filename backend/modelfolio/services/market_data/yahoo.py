# backend/modelfolio/services/market_data/yahoo.py
"""
Yahoo Finance quote provider.

Implements PriceQuoteProvider with the yfinance library. yfinance is a
blocking client, so every call runs in a worker thread (asyncio.to_thread)
and the event loop stays free while Yahoo answers.

Symbols are mapped to Yahoo's format with an exchange suffix:
    SUPRIYA on NSE → SUPRIYA.NS
    SUPRIYA on BSE → SUPRIYA.BO

Limitations:
- Rate limits (not officially documented, but exist)
- Quotes may be delayed by 15-20 minutes
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import yfinance as yf

from modelfolio.services.constants import EXCHANGE_SUFFIXES, PRICE_QUANT
from modelfolio.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from modelfolio.services.market_data.base import PriceQuoteProvider, Quote

logger = logging.getLogger(__name__)


class YahooQuoteProvider(PriceQuoteProvider):
    """
    Yahoo Finance implementation of PriceQuoteProvider.

    Configuration:
        health_check_symbol: Symbol fetched by is_available() (default: NIFTY 50 index)

    Example:
        provider = YahooQuoteProvider()
        quote = await provider.fetch("SUPRIYA", "NSE")
        print(quote.price)
    """

    def __init__(self, health_check_symbol: str = "^NSEI") -> None:
        self._health_check_symbol = health_check_symbol
        logger.info(f"YahooQuoteProvider initialized (health check: {health_check_symbol})")

    @property
    def name(self) -> str:
        return "yahoo"

    # =========================================================================
    # QUOTES
    # =========================================================================

    async def fetch(self, ticker: str, exchange: str) -> Quote:
        """
        Fetch the last traded price from Yahoo Finance.

        Raises:
            TickerNotFoundError: If Yahoo has no price for the symbol
            RateLimitError: If Yahoo throttled the request
            ProviderUnavailableError: On any other failure
        """
        ticker = ticker.strip().upper()
        exchange = exchange.strip().upper() if exchange else ""
        return await asyncio.to_thread(self._fetch_quote, ticker, exchange)

    async def is_available(self) -> bool:
        """Fetch the health check symbol once; any failure means unavailable."""
        try:
            await asyncio.to_thread(self._last_price, self._health_check_symbol)
        except Exception as e:
            logger.warning(f"Yahoo Finance health check failed: {e}")
            return False
        return True

    def _fetch_quote(self, ticker: str, exchange: str) -> Quote:
        """Blocking fetch, run in a worker thread."""
        yahoo_symbol = self._build_yahoo_symbol(ticker, exchange)
        logger.debug(f"Fetching quote for {yahoo_symbol}")

        try:
            price = self._to_decimal(self._last_price(yahoo_symbol))
        except Exception as e:
            error_str = str(e).lower()
            if "not found" in error_str or "no data" in error_str or "delisted" in error_str:
                raise TickerNotFoundError(ticker=ticker, exchange=exchange, provider=self.name)
            if "rate limit" in error_str or "too many requests" in error_str:
                raise RateLimitError(provider=self.name)

            logger.error(f"Yahoo Finance error for {yahoo_symbol}: {e}")
            raise ProviderUnavailableError(provider=self.name, reason=str(e))

        if price is None or price <= 0:
            raise TickerNotFoundError(ticker=ticker, exchange=exchange, provider=self.name)

        return Quote(price=price, as_of=datetime.now(timezone.utc))

    @staticmethod
    def _last_price(yahoo_symbol: str) -> Any:
        return yf.Ticker(yahoo_symbol).fast_info["lastPrice"]

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(PRICE_QUANT)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _build_yahoo_symbol(ticker: str, exchange: str) -> str:
        """
        Build Yahoo Finance symbol from ticker and exchange.

        Returns:
            Yahoo Finance symbol (e.g., "SUPRIYA.NS")
        """
        suffix = EXCHANGE_SUFFIXES.get(exchange, "")
        return f"{ticker}{suffix}"
