# backend/modelfolio/schemas/valuation.py
"""
Pydantic schemas for portfolio valuation and history responses.

Mirrors the internal valuation dataclasses; routers map one to the other.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class HoldingValuationResponse(BaseModel):
    """Valuation of a single holding."""

    holding_id: int | None
    symbol: str
    exchange: str
    sector: str | None = None
    status: str
    quantity: int
    buy_price: Decimal
    price: Decimal | None = Field(default=None, description="Price used for the valuation")
    price_source: str | None = Field(
        default=None,
        description="closing, current, cached or buy_price"
    )
    minimum_investment_value_stock: Decimal
    investment_value_at_buy: Decimal
    investment_value_at_market: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    realized_pnl: Decimal
    data_quality_issues: list[str] = Field(default_factory=list)


class MinimumInvestmentResponse(BaseModel):
    configured_min_investment: Decimal
    allocated_capital: Decimal
    effective_min_investment: Decimal
    threshold: Decimal
    current_total: Decimal
    is_below_threshold: bool
    shortfall: Decimal


class PortfolioValuationResponse(BaseModel):
    """Full valuation of a portfolio."""

    portfolio_id: int
    portfolio_name: str
    as_of: datetime
    use_closing_price: bool
    cash_balance: Decimal
    holdings_value_at_buy: Decimal
    holdings_value_at_market: Decimal
    total_portfolio_value: Decimal
    total_unrealized_pnl: Decimal
    total_unrealized_pnl_percent: Decimal
    total_realized_pnl: Decimal
    min_investment: MinimumInvestmentResponse
    holdings: list[HoldingValuationResponse]
    warnings: list[str] = Field(default_factory=list)
    has_complete_data: bool
    run_id: str | None = Field(default=None, description="Run ID of the calculation trace")


class HistoryPointResponse(BaseModel):
    date: date
    portfolio_value: Decimal
    cash_remaining: Decimal
    gain: Decimal
    gain_percent: Decimal


class PortfolioHistoryResponse(BaseModel):
    """Daily portfolio value series for a period."""

    portfolio_id: int
    portfolio_name: str
    period: str = Field(..., description="1d, 1w, 1m, 3m, 6m, 1y or all")
    total_gain: Decimal
    total_gain_percent: Decimal
    points: list[HistoryPointResponse]
