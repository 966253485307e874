# backend/modelfolio/services/valuation/types.py
"""
Internal data types for the valuation engine.

These dataclasses are used internally by the valuation calculators and the
engine. They are NOT Pydantic schemas - those are defined in
modelfolio/schemas/valuation.py for API serialization.

Design Principles:
- Immutable where possible (frozen=True for value objects)
- Use Decimal for ALL financial values (never float)
- Derived values are computed by calculators, never by model properties
- Data-quality issues accumulate instead of failing the valuation

Type Hierarchy:
    EffectivePrice          - Price chosen for one holding, with its source
    HoldingValuationResult  - Derived values for one holding
    MinimumInvestmentCheck  - Result of the minimum-investment validation
    PortfolioValuation      - Complete valuation of one portfolio
    BatchValuationResult    - Valuation of many portfolios, failures isolated
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PriceSource(str, Enum):
    """Where the price used for a holding came from."""
    CLOSING = "closing"        # Symbol's fresh closing price (closing valuations only)
    CURRENT = "current"        # Symbol's current (last traded) price
    CACHED = "cached"          # Holding's cached price, symbol had none
    BUY_PRICE = "buy_price"    # Nothing else known, valued at cost


# =============================================================================
# PRICES
# =============================================================================

@dataclass(frozen=True)
class EffectivePrice:
    """
    The price selected for valuing a symbol.

    Attributes:
        price: Price per share
        source: Which price was selected
        as_of: When the price was recorded (None if unknown)
    """

    price: Decimal
    source: PriceSource
    as_of: datetime | None = None

    @property
    def is_fallback(self) -> bool:
        """True if the price did not come from the symbol registry."""
        return self.source in (PriceSource.CACHED, PriceSource.BUY_PRICE)


# =============================================================================
# HOLDING VALUATION
# =============================================================================

@dataclass(frozen=True)
class HoldingValuationResult:
    """
    Derived values for a single holding.

    Closed holdings (quantity = 0) are kept for audit with zero market value
    and zero unrealized P&L; their buy_price and
    minimum_investment_value_stock are reported as stored.

    Attributes:
        holding_id: Database ID of the holding
        symbol: Ticker
        exchange: Exchange code
        quantity: Shares held
        buy_price: Blended average cost per share
        minimum_investment_value_stock: Capital allocated to the position
        realized_pnl: Cumulative realized P&L from sells (reporting only)
        price: Price used (None for closed holdings)
        price_source: Source of the price (None for closed holdings)
        investment_value_at_buy: buy_price × quantity
        investment_value_at_market: price × quantity
        unrealized_pnl: Market value minus cost
        unrealized_pnl_percent: Unrealized P&L as % of cost (0 if cost is 0)
        data_quality_issues: Problems found while pricing this holding
    """

    holding_id: int | None
    symbol: str
    exchange: str
    sector: str | None
    status: str
    quantity: int
    buy_price: Decimal
    minimum_investment_value_stock: Decimal
    realized_pnl: Decimal
    price: Decimal | None
    price_source: PriceSource | None
    investment_value_at_buy: Decimal
    investment_value_at_market: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    data_quality_issues: tuple[str, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.quantity > 0

    @property
    def has_data_quality_issues(self) -> bool:
        return len(self.data_quality_issues) > 0


# =============================================================================
# PORTFOLIO VALUATION
# =============================================================================

@dataclass(frozen=True)
class MinimumInvestmentCheck:
    """
    Minimum-investment validation.

    effective_min_investment = max(configured, allocated_capital), where
    allocated_capital sums minimum_investment_value_stock over open holdings.
    The portfolio is flagged when its current total (cash + market value)
    falls below effective_min_investment × (1 - tolerance).
    """

    configured_min_investment: Decimal
    allocated_capital: Decimal
    effective_min_investment: Decimal
    tolerance: Decimal
    threshold: Decimal
    current_total: Decimal

    @property
    def is_below_threshold(self) -> bool:
        return self.current_total < self.threshold

    @property
    def shortfall(self) -> Decimal:
        """How far the current total is below the threshold (0 if not below)."""
        return max(self.threshold - self.current_total, Decimal("0"))


@dataclass
class PortfolioValuation:
    """
    Complete valuation of a portfolio.

    total_portfolio_value = cash_balance + holdings_value_at_market, where only
    open holdings contribute market value.

    Attributes:
        portfolio_id: Portfolio ID
        portfolio_name: Portfolio name
        as_of: Moment the prices were resolved for
        use_closing_price: True for closing (daily snapshot) valuations
        cash_balance: Cash as stored, never recomputed here
        holdings: Every holding, open and closed, in portfolio order
        holdings_value_at_buy: Σ cost of open holdings
        holdings_value_at_market: Σ market value of open holdings
        total_portfolio_value: Cash + holdings market value
        total_unrealized_pnl: Σ unrealized P&L of open holdings
        total_unrealized_pnl_percent: total unrealized / holdings cost × 100
        total_realized_pnl: Σ realized P&L of all holdings
        min_investment: Minimum-investment check result
        warnings: Portfolio-level warnings (shortfalls, data-quality summary)
        run_id: Correlation ID of the valuation run (audit trace key)
    """

    portfolio_id: int
    portfolio_name: str
    as_of: datetime
    use_closing_price: bool
    cash_balance: Decimal
    holdings: list[HoldingValuationResult]
    holdings_value_at_buy: Decimal
    holdings_value_at_market: Decimal
    total_portfolio_value: Decimal
    total_unrealized_pnl: Decimal
    total_unrealized_pnl_percent: Decimal
    total_realized_pnl: Decimal
    min_investment: MinimumInvestmentCheck
    warnings: list[str] = field(default_factory=list)
    run_id: str | None = None

    @property
    def open_holdings(self) -> list[HoldingValuationResult]:
        return [h for h in self.holdings if h.is_open]

    @property
    def has_complete_data(self) -> bool:
        """True if every open holding was priced from the symbol registry."""
        return not any(h.has_data_quality_issues for h in self.open_holdings)


@dataclass
class BatchValuationResult:
    """
    Result of valuing many portfolios in one run.

    A failure in one portfolio never prevents the others from being valued.

    Attributes:
        valuations: Successful valuations by portfolio ID
        failed: Error message by portfolio ID
        run_id: Correlation ID of the batch
    """

    valuations: dict[int, PortfolioValuation] = field(default_factory=dict)
    failed: dict[int, str] = field(default_factory=dict)
    run_id: str | None = None

    @property
    def success_count(self) -> int:
        return len(self.valuations)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count
