# backend/modelfolio/services/valuation/engine.py
"""
Portfolio Valuation Engine - recomputes every derived value of a portfolio.

Entry points:
- value_portfolio(): Value one portfolio, optionally persisting derived fields
- value_all(): Value every portfolio, isolating failures per portfolio

Design Principles:
- Dependency Injection: price resolver and audit sink passed to the constructor
- Cash and quantities are READ, never written (they belong to transactions)
- Only derived holding fields are persisted; buy_price and
  minimum_investment_value_stock are never touched
- Deterministic: unchanged prices and holdings give an identical result
- No HTTP Knowledge: Raises domain exceptions, not HTTPException

Usage:
    from modelfolio.services.valuation import PortfolioValuationEngine

    engine = PortfolioValuationEngine(audit_sink=InMemoryAuditSink())

    valuation = engine.value_portfolio(db, portfolio_id=1)
    batch = engine.value_all(db, use_closing_price=True)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from modelfolio.config import settings
from modelfolio.models import Portfolio, StockSymbol
from modelfolio.services.constants import MONEY_QUANT, PERCENT_QUANT, ZERO, HUNDRED
from modelfolio.services.exceptions import PortfolioNotFoundError, ServiceError, ValuationError
from modelfolio.services.valuation.calculators import (
    EffectivePriceResolver,
    HoldingValuator,
    quantize_money,
)
from modelfolio.services.valuation.trace import CalculationStep, CalculationTrace
from modelfolio.services.valuation.types import (
    BatchValuationResult,
    EffectivePrice,
    HoldingValuationResult,
    MinimumInvestmentCheck,
    PortfolioValuation,
    PriceSource,
)
from modelfolio.utils.context import correlation_scope, get_correlation_id, new_correlation_id

if TYPE_CHECKING:
    from modelfolio.models import Holding
    from modelfolio.services.protocols import CalculationAuditSink

logger = logging.getLogger(__name__)

SymbolKey = tuple[str, str]


def _symbol_key(ticker: str, exchange) -> SymbolKey:
    return ticker.upper(), getattr(exchange, "value", exchange)


class PortfolioValuationEngine:
    """
    Orchestrates the valuation pipeline of a portfolio.

    Pipeline:
        1. Price fetch: one registry query, effective price per open symbol
        2. Holdings value: HoldingValuator per holding (closed ones kept at 0)
        3. Minimum investment: effective minimum and shortfall warning
        4. Cash balance: passed through as stored
        5. Total value: cash + Σ market value of open holdings
        6. Summary: trace entries published to the audit sink
    """

    def __init__(
            self,
            price_resolver: EffectivePriceResolver | None = None,
            audit_sink: CalculationAuditSink | None = None,
            min_investment_tolerance: Decimal | None = None,
            clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            price_resolver: Effective price policy. Defaults to the configured
                            closing-price freshness window.
            audit_sink: Receives trace entries (None disables auditing)
            min_investment_tolerance: Fraction below the effective minimum
                                      tolerated before warning
            clock: Source of "now" when as_of is not given
        """
        self._resolver = price_resolver or EffectivePriceResolver(
            freshness_hours=settings.closing_price_freshness_hours
        )
        self._valuator = HoldingValuator()
        self._audit_sink = audit_sink
        self._tolerance = (
            min_investment_tolerance
            if min_investment_tolerance is not None
            else settings.min_investment_tolerance
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def value_portfolio(
            self,
            db: Session,
            portfolio_id: int,
            as_of: datetime | None = None,
            use_closing_price: bool = False,
            persist: bool = True,
    ) -> PortfolioValuation:
        """
        Value a single portfolio.

        Args:
            db: Database session
            portfolio_id: Portfolio to value
            as_of: Valuation moment (default: now)
            use_closing_price: Prefer fresh closing prices (daily snapshot)
            persist: Write derived holding fields and commit

        Returns:
            PortfolioValuation

        Raises:
            PortfolioNotFoundError: If the portfolio doesn't exist
            ValuationError: If the valuation failed (CRITICAL_ERROR traced)
        """
        as_of = as_of or self._clock()
        run_id = get_correlation_id() or new_correlation_id("valuation")
        trace = CalculationTrace(run_id=run_id, portfolio_id=portfolio_id)

        try:
            portfolio = db.get(Portfolio, portfolio_id)
        except SQLAlchemyError as e:
            raise self._abort(db, trace, e) from e
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)
        trace.portfolio_name = portfolio.name

        try:
            valuation = self._calculate(db, portfolio, as_of, use_closing_price, trace)
            if persist:
                self._persist_derived(portfolio.holdings, valuation.holdings)
                db.commit()
            trace.record(
                CalculationStep.COMPLETION,
                f"Valuation completed: total {valuation.total_portfolio_value}",
                {"persisted": persist, "warnings": len(valuation.warnings)},
            )
        except Exception as e:
            raise self._abort(db, trace, e) from e

        self._publish(trace)
        logger.info(
            f"Valued portfolio {portfolio_id} ({portfolio.name}): "
            f"total={valuation.total_portfolio_value}, cash={valuation.cash_balance}, "
            f"holdings={len(valuation.open_holdings)} open, warnings={len(valuation.warnings)}"
        )
        return valuation

    def value_all(
            self,
            db: Session,
            as_of: datetime | None = None,
            use_closing_price: bool = False,
            persist: bool = True,
    ) -> BatchValuationResult:
        """
        Value every portfolio.

        A failing portfolio is recorded in ``failed`` and the batch continues.

        Returns:
            BatchValuationResult
        """
        as_of = as_of or self._clock()
        portfolio_ids = db.scalars(select(Portfolio.id).order_by(Portfolio.id)).all()

        with correlation_scope(correlation_id=get_correlation_id() or new_correlation_id("valuation-batch")) as run_id:
            result = BatchValuationResult(run_id=run_id)
            for portfolio_id in portfolio_ids:
                try:
                    result.valuations[portfolio_id] = self.value_portfolio(
                        db, portfolio_id, as_of=as_of,
                        use_closing_price=use_closing_price, persist=persist,
                    )
                except ServiceError as e:
                    result.failed[portfolio_id] = str(e)

            logger.info(
                f"Valuation batch {run_id}: {result.success_count}/{result.total} succeeded, "
                f"{result.failure_count} failed"
            )
        return result

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _calculate(
            self,
            db: Session,
            portfolio: Portfolio,
            as_of: datetime,
            use_closing_price: bool,
            trace: CalculationTrace,
    ) -> PortfolioValuation:
        holdings = list(portfolio.holdings)
        open_holdings = [h for h in holdings if h.quantity > 0]

        # Step 1: Effective price for every distinct open symbol (single query)
        prices = self._fetch_prices(db, open_holdings, as_of, use_closing_price)
        missing = sorted(f"{k[0]}:{k[1]}" for k, v in prices.items() if v is None)
        trace.record(
            CalculationStep.PRICE_FETCH,
            f"Resolved {len(prices) - len(missing)}/{len(prices)} symbol prices",
            {
                "as_of": as_of,
                "use_closing_price": use_closing_price,
                "prices": {
                    f"{k[0]}:{k[1]}": {"price": v.price, "source": v.source}
                    for k, v in prices.items() if v is not None
                },
                "missing": missing,
            },
            level="WARNING" if missing else "INFO",
        )

        # Step 2: Value each holding, closed ones included for audit
        results: list[HoldingValuationResult] = []
        for holding in holdings:
            price = prices.get(_symbol_key(holding.symbol, holding.exchange)) if holding.quantity > 0 else None
            results.append(self._valuator.value(holding, price, missing_reason="symbol has no usable price"))

        open_results = [r for r in results if r.is_open]
        value_at_buy = sum((r.investment_value_at_buy for r in open_results), ZERO)
        value_at_market = sum((r.investment_value_at_market for r in open_results), ZERO)
        trace.record(
            CalculationStep.HOLDINGS_VALUE,
            f"Valued {len(open_results)} open and {len(results) - len(open_results)} closed holdings",
            {
                "holdings": [
                    {
                        "symbol": r.symbol,
                        "quantity": r.quantity,
                        "price": r.price,
                        "price_source": r.price_source,
                        "market_value": r.investment_value_at_market,
                        "unrealized_pnl": r.unrealized_pnl,
                        "issues": list(r.data_quality_issues),
                    }
                    for r in results
                ],
                "value_at_buy": value_at_buy,
                "value_at_market": value_at_market,
            },
        )

        cash = quantize_money(portfolio.cash_balance or ZERO)

        # Step 3: Minimum investment check (non-fatal)
        min_check = self._check_min_investment(portfolio, open_results, cash + value_at_market)
        warnings: list[str] = []
        if min_check.is_below_threshold:
            warnings.append(
                f"Portfolio value {min_check.current_total} is below the minimum investment "
                f"threshold {min_check.threshold} (effective minimum "
                f"{min_check.effective_min_investment}, shortfall {min_check.shortfall})"
            )
            logger.warning(f"Portfolio {portfolio.id}: {warnings[-1]}")
        trace.record(
            CalculationStep.MIN_INVESTMENT,
            "Below minimum investment threshold" if min_check.is_below_threshold else "Minimum investment satisfied",
            {
                "configured": min_check.configured_min_investment,
                "allocated_capital": min_check.allocated_capital,
                "effective": min_check.effective_min_investment,
                "tolerance": min_check.tolerance,
                "threshold": min_check.threshold,
                "current_total": min_check.current_total,
                "shortfall": min_check.shortfall,
            },
            level="WARNING" if min_check.is_below_threshold else "INFO",
        )

        # Step 4: Cash is owned by the transaction processor, read only here
        trace.record(CalculationStep.CASH_BALANCE, f"Cash balance {cash}", {"cash_balance": cash})

        # Step 5: Total value
        total = cash + value_at_market
        trace.record(
            CalculationStep.TOTAL_VALUE,
            f"Total portfolio value {total}",
            {"cash_balance": cash, "holdings_value_at_market": value_at_market, "total": total},
        )

        # Step 6: Summary
        unrealized = value_at_market - value_at_buy
        unrealized_pct = (
            (unrealized / value_at_buy * HUNDRED).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
            if value_at_buy != ZERO else ZERO.quantize(PERCENT_QUANT)
        )
        realized = sum((r.realized_pnl for r in results), ZERO)

        degraded = [r.symbol for r in open_results if r.has_data_quality_issues]
        if degraded:
            warnings.append(
                f"{len(degraded)} holding(s) valued with fallback prices: {', '.join(degraded)}"
            )

        valuation = PortfolioValuation(
            portfolio_id=portfolio.id,
            portfolio_name=portfolio.name,
            as_of=as_of,
            use_closing_price=use_closing_price,
            cash_balance=cash,
            holdings=results,
            holdings_value_at_buy=value_at_buy,
            holdings_value_at_market=value_at_market,
            total_portfolio_value=total,
            total_unrealized_pnl=unrealized,
            total_unrealized_pnl_percent=unrealized_pct,
            total_realized_pnl=quantize_money(realized),
            min_investment=min_check,
            warnings=warnings,
            run_id=trace.run_id,
        )
        trace.record(
            CalculationStep.SUMMARY,
            "Valuation summary",
            {
                "total_portfolio_value": total,
                "unrealized_pnl": unrealized,
                "unrealized_pnl_percent": unrealized_pct,
                "realized_pnl": valuation.total_realized_pnl,
                "has_complete_data": valuation.has_complete_data,
                "warnings": warnings,
            },
            level="WARNING" if warnings else "INFO",
        )
        return valuation

    def _fetch_prices(
            self,
            db: Session,
            open_holdings: list[Holding],
            as_of: datetime,
            use_closing_price: bool,
    ) -> dict[SymbolKey, EffectivePrice | None]:
        keys = {_symbol_key(h.symbol, h.exchange) for h in open_holdings}
        if not keys:
            return {}

        tickers = sorted({ticker for ticker, _ in keys})
        symbols = db.scalars(select(StockSymbol).where(StockSymbol.ticker.in_(tickers))).all()
        registry = {_symbol_key(s.ticker, s.exchange): s for s in symbols}

        return {
            key: self._resolver.resolve(registry.get(key), as_of, use_closing_price)
            for key in sorted(keys)
        }

    def _check_min_investment(
            self,
            portfolio: Portfolio,
            open_results: list[HoldingValuationResult],
            current_total: Decimal,
    ) -> MinimumInvestmentCheck:
        configured = quantize_money(portfolio.min_investment or ZERO)
        allocated = quantize_money(sum((r.minimum_investment_value_stock for r in open_results), ZERO))
        effective = max(configured, allocated)
        threshold = quantize_money(effective * (Decimal("1") - self._tolerance))
        return MinimumInvestmentCheck(
            configured_min_investment=configured,
            allocated_capital=allocated,
            effective_min_investment=effective,
            tolerance=self._tolerance,
            threshold=threshold,
            current_total=current_total,
        )

    # =========================================================================
    # PERSISTENCE / AUDIT
    # =========================================================================

    @staticmethod
    def _persist_derived(holdings: list[Holding], results: list[HoldingValuationResult]) -> None:
        """Write derived fields only. Quantity, buy_price and allocation stay untouched."""
        for holding, result in zip(holdings, results):
            if result.price_source in (PriceSource.CLOSING, PriceSource.CURRENT):
                holding.current_price = result.price
            holding.investment_value_at_buy = result.investment_value_at_buy
            holding.investment_value_at_market = result.investment_value_at_market
            holding.unrealized_pnl = result.unrealized_pnl
            holding.unrealized_pnl_percent = result.unrealized_pnl_percent

    def _abort(self, db: Session, trace: CalculationTrace, error: Exception) -> ValuationError:
        """Roll back, record CRITICAL_ERROR and build the error to raise."""
        db.rollback()
        trace.record(
            CalculationStep.CRITICAL_ERROR,
            f"Valuation aborted: {error}",
            {"error_type": type(error).__name__, "completed_steps": [s.value for s in trace.steps]},
            level="ERROR",
        )
        logger.error(f"Critical error valuing portfolio {trace.portfolio_id}: {error}", exc_info=True)
        self._publish(trace)
        return ValuationError(trace.portfolio_id, str(error))

    def _publish(self, trace: CalculationTrace) -> None:
        if self._audit_sink is None:
            return
        try:
            for entry in trace.entries:
                self._audit_sink.append(entry)
        except Exception as e:
            logger.error(f"Failed to write calculation trace {trace.run_id}: {e}")
