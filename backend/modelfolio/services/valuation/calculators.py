# backend/modelfolio/services/valuation/calculators.py
"""
Point-in-time holding valuation calculators.

Each calculator follows the Single Responsibility Principle:
- MarketValueCalculator: price × quantity
- CostCalculator: buy_price × quantity
- UnrealizedPnLCalculator: market value versus cost, amount and percent
- EffectivePriceResolver: picks closing or current price for a symbol
- HoldingValuator: combines the above for one holding, with price fallback

Design Principles:
- Stateless or configuration-only state (pure functions)
- Receive plain values or read-only model attributes, never write to models
- Uses Decimal for ALL financial calculations
- A missing price degrades to a data-quality issue, never an exception

Usage:
    resolver = EffectivePriceResolver(freshness_hours=24)
    valuator = HoldingValuator()

    price = resolver.resolve(symbol, as_of=now, use_closing_price=True)
    result = valuator.value(holding, price)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING

from modelfolio.services.constants import MONEY_QUANT, PERCENT_QUANT, ZERO, HUNDRED
from modelfolio.services.valuation.types import (
    EffectivePrice,
    HoldingValuationResult,
    PriceSource,
)

if TYPE_CHECKING:
    from modelfolio.models import Holding, StockSymbol

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite returns them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _enum_value(value) -> str:
    if value is None:
        return ""
    return getattr(value, "value", value)


# =============================================================================
# MARKET VALUE / COST
# =============================================================================

class MarketValueCalculator:
    """
    Calculates the market value of a position.

    Formula:
        market_value = price × quantity

    A position with quantity 0 is worth 0 whatever the price, including when
    the price is unknown.
    """

    def calculate(self, quantity: int, price: Decimal | None) -> Decimal:
        if quantity == 0 or price is None:
            return ZERO.quantize(MONEY_QUANT)
        return quantize_money(price * Decimal(quantity))


class CostCalculator:
    """Cost of the shares currently held: buy_price × quantity."""

    def calculate(self, quantity: int, buy_price: Decimal) -> Decimal:
        if quantity == 0:
            return ZERO.quantize(MONEY_QUANT)
        return quantize_money(buy_price * Decimal(quantity))


# =============================================================================
# UNREALIZED P&L CALCULATOR
# =============================================================================

class UnrealizedPnLCalculator:
    """
    Calculates unrealized P&L (paper gains/losses) on a position.

    Formula:
        unrealized_pnl = market_value - (buy_price × quantity)
        unrealized_pct = unrealized_pnl / (buy_price × quantity) × 100

    The percentage is 0 when the cost is 0 (closed holding or zero buy price).
    """

    def __init__(self) -> None:
        self._market_value = MarketValueCalculator()
        self._cost = CostCalculator()

    def calculate(
            self,
            quantity: int,
            buy_price: Decimal,
            price: Decimal | None,
    ) -> tuple[Decimal, Decimal]:
        """
        Calculate unrealized P&L.

        Args:
            quantity: Shares held
            buy_price: Blended average cost per share
            price: Current price per share (None counts as no market value)

        Returns:
            Tuple of (amount, percentage), both quantized to 0.01
        """
        market_value = self._market_value.calculate(quantity, price)
        cost = self._cost.calculate(quantity, buy_price)
        amount = market_value - cost

        if cost == ZERO:
            return amount, ZERO.quantize(PERCENT_QUANT)

        percent = (amount / cost * HUNDRED).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
        return amount, percent


# =============================================================================
# EFFECTIVE PRICE
# =============================================================================

class EffectivePriceResolver:
    """
    Chooses the price used to value a symbol.

    Closing valuations (daily snapshots) use the symbol's today_closing_price
    when it was recorded within ``freshness_hours`` before ``as_of``, so the
    snapshot stays stable while intraday prices keep moving. Every other case
    uses current_price.
    """

    def __init__(self, freshness_hours: int = 24) -> None:
        self.freshness_window = timedelta(hours=freshness_hours)

    def is_closing_price_fresh(self, symbol: StockSymbol, as_of: datetime) -> bool:
        if symbol.today_closing_price is None or symbol.closing_price_updated_at is None:
            return False
        age = as_utc(as_of) - as_utc(symbol.closing_price_updated_at)
        # A closing price stamped after as_of is fresh too (clock skew, replays)
        return age <= self.freshness_window

    def resolve(
            self,
            symbol: StockSymbol | None,
            as_of: datetime,
            use_closing_price: bool = False,
    ) -> EffectivePrice | None:
        """
        Resolve the effective price of a symbol.

        Args:
            symbol: Registry entry (None if the symbol is not registered)
            as_of: Valuation moment
            use_closing_price: Request closing-price semantics

        Returns:
            EffectivePrice, or None if the symbol has no usable price
        """
        if symbol is None:
            return None

        if use_closing_price and self.is_closing_price_fresh(symbol, as_of):
            return EffectivePrice(
                price=symbol.today_closing_price,
                source=PriceSource.CLOSING,
                as_of=symbol.closing_price_updated_at,
            )

        if symbol.current_price is None or symbol.current_price <= ZERO:
            return None

        return EffectivePrice(
            price=symbol.current_price,
            source=PriceSource.CURRENT,
            as_of=symbol.last_updated,
        )


# =============================================================================
# HOLDING VALUATOR
# =============================================================================

class HoldingValuator:
    """
    Values one holding from its stored fields and an effective price.

    When no effective price is available the holding's cached current_price
    is used, then its buy_price, and a data-quality issue is recorded. The
    valuation of the rest of the portfolio is never blocked by one symbol.
    """

    def __init__(self) -> None:
        self._market_value = MarketValueCalculator()
        self._cost = CostCalculator()
        self._pnl = UnrealizedPnLCalculator()

    def fallback_price(self, holding: Holding, reason: str) -> tuple[EffectivePrice, str]:
        """
        Last-known price for a holding whose symbol has no price.

        Returns:
            Tuple of (price, data-quality issue message)
        """
        if holding.current_price is not None and holding.current_price > ZERO:
            price = EffectivePrice(price=holding.current_price, source=PriceSource.CACHED)
            issue = f"PriceUnavailable: {reason}; using last cached price {holding.current_price}"
        else:
            price = EffectivePrice(price=holding.buy_price, source=PriceSource.BUY_PRICE)
            issue = f"PriceUnavailable: {reason}; no cached price, valued at buy price {holding.buy_price}"
        return price, issue

    def value(
            self,
            holding: Holding,
            effective_price: EffectivePrice | None,
            missing_reason: str = "symbol has no current price",
    ) -> HoldingValuationResult:
        """
        Calculate derived values for a holding.

        Args:
            holding: The holding (read only)
            effective_price: Price from the symbol registry, or None
            missing_reason: Explanation used when effective_price is None

        Returns:
            HoldingValuationResult; closed holdings get zero market value
        """
        buy_price = holding.buy_price
        status = _enum_value(holding.status)
        exchange = _enum_value(holding.exchange)

        if holding.quantity == 0:
            return HoldingValuationResult(
                holding_id=holding.id,
                symbol=holding.symbol,
                exchange=exchange,
                sector=holding.sector,
                status=status,
                quantity=0,
                buy_price=buy_price,
                minimum_investment_value_stock=holding.minimum_investment_value_stock,
                realized_pnl=holding.realized_pnl or ZERO,
                price=None,
                price_source=None,
                investment_value_at_buy=ZERO.quantize(MONEY_QUANT),
                investment_value_at_market=ZERO.quantize(MONEY_QUANT),
                unrealized_pnl=ZERO.quantize(MONEY_QUANT),
                unrealized_pnl_percent=ZERO.quantize(PERCENT_QUANT),
            )

        issues: list[str] = []
        if effective_price is None:
            effective_price, issue = self.fallback_price(holding, missing_reason)
            issues.append(issue)
            logger.warning(f"{holding.symbol}: {issue}")

        amount, percent = self._pnl.calculate(holding.quantity, buy_price, effective_price.price)

        return HoldingValuationResult(
            holding_id=holding.id,
            symbol=holding.symbol,
            exchange=exchange,
            sector=holding.sector,
            status=status,
            quantity=holding.quantity,
            buy_price=buy_price,
            minimum_investment_value_stock=holding.minimum_investment_value_stock,
            realized_pnl=holding.realized_pnl or ZERO,
            price=effective_price.price,
            price_source=effective_price.source,
            investment_value_at_buy=self._cost.calculate(holding.quantity, buy_price),
            investment_value_at_market=self._market_value.calculate(holding.quantity, effective_price.price),
            unrealized_pnl=amount,
            unrealized_pnl_percent=percent,
            data_quality_issues=tuple(issues),
        )
