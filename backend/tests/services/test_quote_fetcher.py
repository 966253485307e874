# tests/services/test_quote_fetcher.py
"""
Tests for QuoteFetcher: timeout, retry and circuit breaking per symbol.
"""

import asyncio
from decimal import Decimal

import pytest

from modelfolio.services.circuit_breaker import CircuitBreaker
from modelfolio.services.exceptions import ProviderUnavailableError, RateLimitError, TickerNotFoundError
from modelfolio.services.market_data import QuoteErr, QuoteFetcher, QuoteOk
from tests.conftest import FakeQuoteProvider


class SlowProvider(FakeQuoteProvider):
    """Answers only after ``delay`` seconds."""

    def __init__(self, delay: float):
        super().__init__({"SLOW": Decimal("10")})
        self.delay = delay

    async def fetch(self, ticker, exchange):
        self.calls.append(ticker)
        await asyncio.sleep(self.delay)
        return await super().fetch(ticker, exchange)


def unavailable() -> ProviderUnavailableError:
    return ProviderUnavailableError("fake", "connection reset")


@pytest.fixture
def fetcher(fake_provider) -> QuoteFetcher:
    return QuoteFetcher(fake_provider, max_attempts=3, retry_delay=0, timeout=1.0)


class TestRetries:
    """Retry policy."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, fetcher, fake_provider):
        """A healthy symbol is fetched in one attempt."""
        fake_provider.set_price("TCS", "3500.5")

        result = await fetcher.fetch("TCS", "NSE")

        assert isinstance(result, QuoteOk)
        assert result.ok
        assert result.price == Decimal("3500.5")
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fetcher, fake_provider):
        """Two failures then a success yields the price on the third attempt."""
        fake_provider.set_price("TCS", "100")
        fake_provider.fail("TCS", [unavailable(), RateLimitError("fake")])

        result = await fetcher.fetch("TCS", "NSE")

        assert result.ok
        assert result.attempts == 3
        assert fake_provider.call_count("TCS") == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, fetcher, fake_provider):
        """Persistent failure ends in QuoteErr carrying the last error."""
        fake_provider.fail("TCS", unavailable())

        result = await fetcher.fetch("TCS", "NSE")

        assert isinstance(result, QuoteErr)
        assert not result.ok
        assert result.attempts == 3
        assert "connection reset" in result.reason

    @pytest.mark.asyncio
    async def test_unknown_ticker_not_retried(self, fetcher, fake_provider):
        """TickerNotFound fails immediately."""
        result = await fetcher.fetch("NOPE", "NSE")

        assert not result.ok
        assert result.attempts == 1
        assert fake_provider.call_count("NOPE") == 1
        assert "not found" in result.reason

    @pytest.mark.asyncio
    async def test_unexpected_error_is_captured(self, fetcher, fake_provider):
        """Non-provider errors become a QuoteErr instead of propagating."""
        fake_provider.fail("TCS", ValueError("bad payload"))

        result = await fetcher.fetch("TCS", "NSE")

        assert not result.ok
        assert "unexpected error" in result.reason
        assert fake_provider.call_count("TCS") == 1


class TestTimeout:
    """Per-attempt timeout."""

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self):
        """A slow provider times out on every attempt."""
        provider = SlowProvider(delay=1.0)
        fetcher = QuoteFetcher(provider, max_attempts=2, retry_delay=0, timeout=0.01)

        result = await fetcher.fetch("SLOW", "NSE")

        assert not result.ok
        assert result.attempts == 2
        assert "timed out" in result.reason


class TestCircuitBreaking:
    """Fail-fast once the provider keeps failing."""

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self, fake_provider):
        """After the threshold the remaining symbols fail without a provider call."""
        breaker = CircuitBreaker(name="fake", failure_threshold=2, recovery_timeout=60,
                                 excluded_exceptions=(TickerNotFoundError,))
        fetcher = QuoteFetcher(fake_provider, max_attempts=1, retry_delay=0, timeout=1.0, breaker=breaker)
        fake_provider.set_price("C", "1")
        for ticker in ("A", "B", "C"):
            fake_provider.fail(ticker, unavailable())
        fake_provider.errors.pop("C")

        await fetcher.fetch("A", "NSE")
        await fetcher.fetch("B", "NSE")
        result = await fetcher.fetch("C", "NSE")

        assert not result.ok
        assert "Circuit breaker" in result.reason
        assert fake_provider.call_count("C") == 0

    @pytest.mark.asyncio
    async def test_unknown_tickers_do_not_open_circuit(self, fake_provider):
        """Many unknown tickers leave the circuit closed."""
        breaker = CircuitBreaker(name="fake", failure_threshold=2, excluded_exceptions=(TickerNotFoundError,))
        fetcher = QuoteFetcher(fake_provider, max_attempts=1, retry_delay=0, timeout=1.0, breaker=breaker)
        fake_provider.set_price("TCS", "100")

        for ticker in ("X1", "X2", "X3"):
            await fetcher.fetch(ticker, "NSE")

        assert (await fetcher.fetch("TCS", "NSE")).ok
