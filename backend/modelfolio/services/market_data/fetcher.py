# backend/modelfolio/services/market_data/fetcher.py
"""
Retrying quote fetcher.

Wraps a PriceQuoteProvider with the ingestion fetch policy:
- per-attempt timeout (asyncio.wait_for); a timeout is a failed attempt
- up to ``max_attempts`` attempts with a fixed delay between them
  (tenacity AsyncRetrying; the delay is an asyncio sleep, so it is
  cancellable and never blocks other tasks)
- a circuit breaker that fails the remaining symbols fast once the provider
  keeps failing

Whatever happens, fetch() returns a QuoteResult and never raises a
provider error.

Usage:
    fetcher = QuoteFetcher(provider)
    result = await fetcher.fetch("SUPRIYA", "NSE")
    if result.ok:
        ...
"""

import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from modelfolio.config import settings
from modelfolio.services.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from modelfolio.services.exceptions import (
    FetchTimeoutError,
    MarketDataError,
    TickerNotFoundError,
)
from modelfolio.services.market_data.base import PriceQuoteProvider, Quote, QuoteErr, QuoteOk, QuoteResult

logger = logging.getLogger(__name__)


class QuoteFetcher:
    """
    Applies timeout, retry and circuit breaking to a quote provider.

    Args:
        provider: Quote source (injected, owned by the caller)
        max_attempts: Attempts per symbol (default: settings)
        retry_delay: Seconds between attempts (default: settings)
        timeout: Seconds allowed per attempt (default: settings)
        breaker: Circuit breaker (default: one per fetcher)
    """

    def __init__(
            self,
            provider: PriceQuoteProvider,
            max_attempts: int | None = None,
            retry_delay: float | None = None,
            timeout: float | None = None,
            breaker: CircuitBreaker | None = None,
    ) -> None:
        self.provider = provider
        self.max_attempts = max_attempts or settings.price_fetch_max_attempts
        self.retry_delay = settings.price_fetch_retry_delay_seconds if retry_delay is None else retry_delay
        self.timeout = timeout or settings.price_fetch_timeout_seconds
        self.breaker = breaker or CircuitBreaker(
            name=f"{provider.name}-quotes",
            failure_threshold=settings.provider_failure_threshold,
            recovery_timeout=settings.provider_recovery_timeout_seconds,
            excluded_exceptions=(TickerNotFoundError,),
        )

    async def fetch(self, ticker: str, exchange: str) -> QuoteResult:
        """
        Fetch one symbol's price.

        Returns:
            QuoteOk on success, QuoteErr with the last error otherwise
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=(
                retry_if_exception_type(MarketDataError)
                & retry_if_not_exception_type(TickerNotFoundError)
            ),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    quote = await self._fetch_once(ticker, exchange)
        except (MarketDataError, CircuitBreakerOpen) as e:
            logger.warning(f"Price fetch failed for {ticker}:{exchange} after {attempts} attempt(s): {e}")
            return QuoteErr(reason=str(e), attempts=attempts)
        except Exception as e:
            logger.error(f"Unexpected error fetching {ticker}:{exchange}: {e}", exc_info=True)
            return QuoteErr(reason=f"unexpected error: {e}", attempts=attempts)

        return QuoteOk(price=quote.price, as_of=quote.as_of, attempts=attempts)

    async def _fetch_once(self, ticker: str, exchange: str) -> Quote:
        async with self.breaker:
            try:
                return await asyncio.wait_for(self.provider.fetch(ticker, exchange), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise FetchTimeoutError(self.provider.name, ticker, self.timeout)
