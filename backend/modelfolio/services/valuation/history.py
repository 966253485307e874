# backend/modelfolio/services/valuation/history.py
"""
Daily portfolio value snapshots (PriceLog) and performance history.

One PriceLog row exists per portfolio per calendar day. Recording a snapshot
again on the same day overwrites the values and increments update_count, so
the daily job can be re-run safely.

Usage:
    service = PriceLogService()

    service.record_snapshot(db, valuation)
    batch = service.record_all(db, engine)
    history = service.get_history(db, portfolio_id=1, period="1m")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from modelfolio.models import Portfolio, PriceLog
from modelfolio.services.constants import HISTORY_PERIOD_DAYS, PERCENT_QUANT, ZERO, HUNDRED
from modelfolio.services.exceptions import PortfolioNotFoundError, ValidationError
from modelfolio.services.valuation.calculators import as_utc

if TYPE_CHECKING:
    from modelfolio.services.valuation.engine import PortfolioValuationEngine
    from modelfolio.services.valuation.types import BatchValuationResult, PortfolioValuation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryPoint:
    """
    One day of portfolio history.

    gain and gain_percent are relative to the first point of the period.
    """

    log_date: date
    portfolio_value: Decimal
    cash_remaining: Decimal
    gain: Decimal
    gain_percent: Decimal


@dataclass
class PortfolioHistory:
    portfolio_id: int
    portfolio_name: str
    period: str
    points: list[HistoryPoint] = field(default_factory=list)

    @property
    def total_gain(self) -> Decimal:
        return self.points[-1].gain if self.points else ZERO

    @property
    def total_gain_percent(self) -> Decimal:
        return self.points[-1].gain_percent if self.points else ZERO


class PriceLogService:
    """Writes daily snapshots and reads them back as history."""

    def record_snapshot(self, db: Session, valuation: PortfolioValuation, commit: bool = True) -> PriceLog:
        """
        Upsert today's snapshot for the valued portfolio.

        Args:
            db: Database session
            valuation: Output of PortfolioValuationEngine.value_portfolio
            commit: Commit the session after writing

        Returns:
            The created or updated PriceLog
        """
        log_date = as_utc(valuation.as_of).date()
        log = db.scalar(
            select(PriceLog).where(
                PriceLog.portfolio_id == valuation.portfolio_id,
                PriceLog.log_date == log_date,
            )
        )

        if log is None:
            log = PriceLog(
                portfolio_id=valuation.portfolio_id,
                log_date=log_date,
                portfolio_value=valuation.total_portfolio_value,
                cash_remaining=valuation.cash_balance,
                update_count=1,
            )
            db.add(log)
        else:
            log.portfolio_value = valuation.total_portfolio_value
            log.cash_remaining = valuation.cash_balance
            log.update_count = (log.update_count or 0) + 1

        if commit:
            db.commit()

        logger.debug(
            f"Snapshot for portfolio {valuation.portfolio_id} on {log_date}: "
            f"{valuation.total_portfolio_value} (update #{log.update_count})"
        )
        return log

    def record_all(
            self,
            db: Session,
            engine: PortfolioValuationEngine,
            as_of: datetime | None = None,
    ) -> BatchValuationResult:
        """
        Value every portfolio with closing prices and snapshot each one.

        Portfolios whose valuation or snapshot fails are reported in
        ``failed``; the others are still recorded.
        """
        batch = engine.value_all(db, as_of=as_of, use_closing_price=True)

        for portfolio_id, valuation in list(batch.valuations.items()):
            try:
                self.record_snapshot(db, valuation)
            except Exception as e:
                db.rollback()
                logger.error(f"Failed to record snapshot for portfolio {portfolio_id}: {e}")
                del batch.valuations[portfolio_id]
                batch.failed[portfolio_id] = f"snapshot failed: {e}"

        logger.info(
            f"Daily snapshot: {batch.success_count} recorded, {batch.failure_count} failed"
        )
        return batch

    def get_history(
            self,
            db: Session,
            portfolio_id: int,
            period: str = "1m",
            today: date | None = None,
    ) -> PortfolioHistory:
        """
        Read the snapshots of a period, oldest first.

        Args:
            db: Database session
            portfolio_id: Portfolio ID
            period: One of 1d, 1w, 1m, 3m, 6m, 1y, all
            today: Period end (default: today, UTC)

        Raises:
            PortfolioNotFoundError: If the portfolio doesn't exist
            ValidationError: If the period is unknown
        """
        if period not in HISTORY_PERIOD_DAYS:
            raise ValidationError(
                f"Invalid period: '{period}'. Valid options: {', '.join(HISTORY_PERIOD_DAYS)}",
                field="period",
            )

        portfolio = db.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        stmt = select(PriceLog).where(PriceLog.portfolio_id == portfolio_id)
        days = HISTORY_PERIOD_DAYS[period]
        if days is not None:
            end = today or datetime.now(timezone.utc).date()
            stmt = stmt.where(PriceLog.log_date >= end - timedelta(days=days))
        logs = db.scalars(stmt.order_by(PriceLog.log_date)).all()

        history = PortfolioHistory(portfolio_id=portfolio.id, portfolio_name=portfolio.name, period=period)
        if not logs:
            return history

        base = logs[0].portfolio_value
        for log in logs:
            gain = log.portfolio_value - base
            gain_pct = (
                (gain / base * HUNDRED).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
                if base != ZERO else ZERO.quantize(PERCENT_QUANT)
            )
            history.points.append(HistoryPoint(
                log_date=log.log_date,
                portfolio_value=log.portfolio_value,
                cash_remaining=log.cash_remaining,
                gain=gain,
                gain_percent=gain_pct,
            ))
        return history
