# backend/modelfolio/services/market_data/ingestion.py
"""
Price Ingestion Service - refreshes the symbol registry from a quote provider.

One run:
    1. Check the provider is reachable at all (else ProviderUnavailableError)
    2. Load every tracked symbol
    3. Split into batches of ``batch_size``; sleep ``batch_delay`` between batches
    4. Fetch each symbol of a batch sequentially through QuoteFetcher
       (timeout + fixed-delay retries + circuit breaker)
    5. Write all successful prices of the batch in ONE bulk UPDATE, one
       database transaction, in a worker thread
    6. Summarize; alert through the notifier when too many symbols failed

Partial-failure policy:
    A symbol that fails every attempt is recorded in the run summary and the
    batch carries on. A batch whose write fails is recorded symbol by symbol
    and the run carries on. Apart from an unreachable provider, run() never
    raises for market data or database errors.

Price columns written per successful symbol:
    current_price           new price
    previous_price          old current_price, only when the price changed
    last_updated            quote timestamp
    today_closing_price     new price            (closing runs only)
    closing_price_updated_at quote timestamp      (closing runs only)

Usage:
    service = PriceIngestionService(QuoteFetcher(YahooQuoteProvider()))
    summary = await service.run(UpdateType.CLOSING)
    print(summary.message)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from modelfolio.config import settings
from modelfolio.database import SessionLocal
from modelfolio.models import StockSymbol
from modelfolio.services.exceptions import IngestionBatchFailure, ProviderUnavailableError
from modelfolio.services.market_data.base import QuoteOk
from modelfolio.services.market_data.fetcher import QuoteFetcher
from modelfolio.services.protocols import Notifier
from modelfolio.utils.context import correlation_scope

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

class UpdateType(str, Enum):
    """Kind of ingestion run. Only closing runs touch the closing price."""
    REGULAR = "regular"
    CLOSING = "closing"
    MANUAL = "manual"


@dataclass(frozen=True)
class TrackedSymbol:
    id: int
    ticker: str
    exchange: str


@dataclass(frozen=True)
class SymbolFailure:
    """A symbol that could not be refreshed in a run."""

    ticker: str
    exchange: str
    reason: str
    attempts: int = 0


@dataclass(frozen=True)
class PriceUpdate:
    symbol: TrackedSymbol
    price: Decimal
    as_of: datetime
    attempts: int


@dataclass
class IngestionRunSummary:
    """
    Result of one ingestion run.

    Attributes:
        update_type: Kind of run
        run_id: Correlation ID of the run (appears in every log line)
        total: Symbols tracked at the start of the run
        updated_count: Symbols whose price was written
        changed_count: Written symbols whose price differs from the old one
        failures: Symbols not written, with the reason
    """

    update_type: UpdateType
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    duration_seconds: float = 0.0
    total: int = 0
    updated_count: int = 0
    changed_count: int = 0
    failures: list[SymbolFailure] = field(default_factory=list)
    alert_sent: bool = False

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def failure_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.failed_count / self.total

    @property
    def message(self) -> str:
        return (
            f"{self.update_type.value} price update: {self.updated_count}/{self.total} updated, "
            f"{self.changed_count} changed, {self.failed_count} failed "
            f"in {self.duration_seconds:.1f}s"
        )


# =============================================================================
# SERVICE
# =============================================================================

class PriceIngestionService:
    """
    Runs price ingestion over the whole symbol registry.

    The fetcher (and through it the provider) is injected and owned by the
    caller; the service keeps no module-level client.

    Args:
        fetcher: Retrying quote fetcher
        session_factory: Opens a database session per batch write
        notifier: Receives the alert when the failure rate is too high
        batch_size: Symbols per batch (default: settings)
        batch_delay: Seconds between batches (default: settings)
        alert_failure_rate: Failure rate above which an alert is sent (default: settings)
        alert_recipient: Alert address (default: settings)
        sleep: Awaitable sleep, replaced in tests
    """

    def __init__(
            self,
            fetcher: QuoteFetcher,
            session_factory: Callable[[], Session] = SessionLocal,
            notifier: Notifier | None = None,
            batch_size: int | None = None,
            batch_delay: float | None = None,
            alert_failure_rate: float | None = None,
            alert_recipient: str | None = None,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self._session_factory = session_factory
        self._notifier = notifier
        self.batch_size = batch_size or settings.ingestion_batch_size
        self.batch_delay = settings.ingestion_batch_delay_seconds if batch_delay is None else batch_delay
        self.alert_failure_rate = (
            settings.ingestion_alert_failure_rate if alert_failure_rate is None else alert_failure_rate
        )
        self.alert_recipient = alert_recipient or settings.alert_recipient
        self._sleep = sleep

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def run(self, update_type: UpdateType | str = UpdateType.REGULAR) -> IngestionRunSummary:
        """
        Refresh the price of every tracked symbol.

        Args:
            update_type: regular, closing or manual

        Returns:
            IngestionRunSummary

        Raises:
            ProviderUnavailableError: If the provider is unreachable before the run
        """
        update_type = UpdateType(update_type)
        with correlation_scope(prefix=f"ingest-{update_type.value}") as run_id:
            return await self._run(update_type, run_id)

    # =========================================================================
    # RUN
    # =========================================================================

    async def _run(self, update_type: UpdateType, run_id: str) -> IngestionRunSummary:
        provider = self.fetcher.provider
        summary = IngestionRunSummary(
            update_type=update_type,
            run_id=run_id,
            started_at=datetime.now(timezone.utc),
        )
        t0 = time.monotonic()

        if not await provider.is_available():
            logger.error(f"Price provider '{provider.name}' unreachable, {update_type.value} run aborted")
            raise ProviderUnavailableError(provider.name, "health check failed before ingestion run")

        # A new run starts with a closed circuit
        self.fetcher.breaker.reset()

        symbols = await asyncio.to_thread(self._load_symbols)
        summary.total = len(symbols)
        batches = [symbols[i:i + self.batch_size] for i in range(0, len(symbols), self.batch_size)]

        logger.info(
            f"Starting {update_type.value} price update: "
            f"{len(symbols)} symbols in {len(batches)} batch(es)"
        )

        for batch_number, batch in enumerate(batches, start=1):
            if batch_number > 1 and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

            updates, failures = await self._fetch_batch(batch)
            summary.failures.extend(failures)
            if not updates:
                continue

            try:
                changed = await asyncio.to_thread(self._write_batch, batch_number, updates, update_type)
            except IngestionBatchFailure as e:
                logger.error(str(e))
                summary.failures.extend(
                    SymbolFailure(u.symbol.ticker, u.symbol.exchange, e.reason, u.attempts)
                    for u in updates
                )
                continue

            summary.updated_count += len(updates)
            summary.changed_count += changed
            logger.debug(f"Batch {batch_number}/{len(batches)}: {len(updates)} written, {len(failures)} failed")

        summary.finished_at = datetime.now(timezone.utc)
        summary.duration_seconds = time.monotonic() - t0

        if summary.failures:
            logger.warning(summary.message)
        else:
            logger.info(summary.message)

        if summary.total and summary.failure_rate > self.alert_failure_rate:
            summary.alert_sent = await self._send_alert(summary)

        return summary

    async def _fetch_batch(self, batch: list[TrackedSymbol]) -> tuple[list[PriceUpdate], list[SymbolFailure]]:
        updates: list[PriceUpdate] = []
        failures: list[SymbolFailure] = []

        for symbol in batch:
            result = await self.fetcher.fetch(symbol.ticker, symbol.exchange)
            if isinstance(result, QuoteOk):
                updates.append(PriceUpdate(symbol, result.price, result.as_of, result.attempts))
            else:
                failures.append(SymbolFailure(symbol.ticker, symbol.exchange, result.reason, result.attempts))

        return updates, failures

    # =========================================================================
    # DATABASE (worker thread)
    # =========================================================================

    def _load_symbols(self) -> list[TrackedSymbol]:
        with self._session_factory() as session:
            rows = session.execute(
                select(StockSymbol.id, StockSymbol.ticker, StockSymbol.exchange).order_by(StockSymbol.id)
            ).all()
        return [TrackedSymbol(row.id, row.ticker, getattr(row.exchange, "value", row.exchange)) for row in rows]

    def _write_batch(self, batch_number: int, updates: list[PriceUpdate], update_type: UpdateType) -> int:
        """
        Write one batch in a single transaction.

        Returns:
            Number of symbols whose price changed

        Raises:
            IngestionBatchFailure: If the write failed; nothing of the batch is kept
        """
        tickers = [u.symbol.ticker for u in updates]

        with self._session_factory() as session:
            try:
                stored = {
                    row.id: row
                    for row in session.execute(
                        select(StockSymbol.id, StockSymbol.current_price, StockSymbol.previous_price)
                        .where(StockSymbol.id.in_([u.symbol.id for u in updates]))
                    )
                }

                # Every row carries the same keys so the ORM sends one executemany
                params = []
                changed = 0
                for u in updates:
                    old = stored.get(u.symbol.id)
                    old_current = old.current_price if old else None
                    previous = old.previous_price if old else None
                    if old_current is None or old_current != u.price:
                        previous = old_current
                        changed += 1

                    row = {
                        "id": u.symbol.id,
                        "current_price": u.price,
                        "previous_price": previous,
                        "last_updated": u.as_of,
                    }
                    if update_type is UpdateType.CLOSING:
                        row["today_closing_price"] = u.price
                        row["closing_price_updated_at"] = u.as_of
                    params.append(row)

                session.execute(update(StockSymbol), params)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise IngestionBatchFailure(batch_number, tickers, str(e)) from e

        return changed

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def _send_alert(self, summary: IngestionRunSummary) -> bool:
        if self._notifier is None:
            logger.warning(f"Failure rate {summary.failure_rate:.0%} above threshold, no notifier configured")
            return False

        subject = (
            f"[Modelfolio] {summary.update_type.value} price update: "
            f"{summary.failed_count}/{summary.total} symbols failed"
        )
        lines = [summary.message, f"Run: {summary.run_id}", "", "Failed symbols:"]
        lines += [f"  {f.ticker}:{f.exchange} ({f.attempts} attempts) - {f.reason}" for f in summary.failures]

        try:
            return await asyncio.to_thread(self._notifier.notify, self.alert_recipient, subject, "\n".join(lines))
        except Exception as e:
            logger.error(f"Failed to send ingestion alert: {e}")
            return False
