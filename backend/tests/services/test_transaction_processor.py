# tests/services/test_transaction_processor.py
"""
Tests for the in-memory buy / sell state machine.

Portfolios and holdings are transient ORM objects; the processor never
touches a session.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from modelfolio.models import Exchange, Holding, HoldingStatus, Portfolio, TransactionType
from modelfolio.services.exceptions import (
    AlreadyClosedError,
    HoldingNotFoundError,
    InsufficientCashError,
    InvalidQuantityError,
    ValidationError,
)
from modelfolio.services.transactions import HoldingState, TransactionProcessor

SOLD_AT = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def processor() -> TransactionProcessor:
    return TransactionProcessor(clock=lambda: SOLD_AT)


def make_portfolio(cash: str, *holdings: Holding) -> Portfolio:
    portfolio = Portfolio(name="Model", cash_balance=Decimal(cash), min_investment=Decimal("0"))
    for holding in holdings:
        portfolio.holdings.append(holding)
    return portfolio


def make_holding(symbol: str, quantity: int, buy_price: str, allocation: str | None = None) -> Holding:
    buy = Decimal(buy_price)
    return Holding(
        symbol=symbol,
        exchange=Exchange.NSE,
        buy_price=buy,
        quantity=quantity,
        status=HoldingStatus.HOLD,
        minimum_investment_value_stock=Decimal(allocation) if allocation else buy * quantity,
        realized_pnl=Decimal("0"),
    )


# =============================================================================
# SELL
# =============================================================================

class TestCompleteSell:
    """Selling the whole position."""

    def test_proceeds_go_to_cash_without_pnl(self, processor):
        """Cash grows by exactly the proceeds; realized P&L is not added on top."""
        holding = make_holding("SUPRIYA", 25, "850.00")
        portfolio = make_portfolio("27550.00", holding)

        outcome = processor.apply_sell(portfolio, "SUPRIYA", 25, Decimal("657.25"))

        assert outcome.amount == Decimal("16431.25")
        assert portfolio.cash_balance == Decimal("43981.25")
        assert portfolio.cash_balance != Decimal("48800.00")
        assert outcome.realized_pnl == Decimal("-4818.75")
        assert outcome.cash_change == outcome.amount

    def test_holding_closed_with_frozen_fields(self, processor):
        """The closed holding keeps buy price and allocation and records the sale."""
        holding = make_holding("SUPRIYA", 25, "850.00")
        portfolio = make_portfolio("27550.00", holding)

        outcome = processor.apply_sell(portfolio, "SUPRIYA", 25, Decimal("657.25"))

        assert holding.quantity == 0
        assert holding.status == HoldingStatus.SELL
        assert holding.buy_price == Decimal("850.00")
        assert holding.minimum_investment_value_stock == Decimal("21250.00")
        assert holding.realized_pnl == Decimal("-4818.75")
        assert holding.final_sale_price == Decimal("657.25")
        assert holding.sold_at == SOLD_AT
        assert outcome.state_before == HoldingState.OPEN
        assert outcome.state_after == HoldingState.CLOSED

    def test_selling_closed_holding_is_rejected(self, processor):
        """A second sell of a closed position raises AlreadyClosed."""
        holding = make_holding("SUPRIYA", 25, "850.00")
        portfolio = make_portfolio("27550.00", holding)
        processor.apply_sell(portfolio, "SUPRIYA", 25, Decimal("657.25"))

        with pytest.raises(AlreadyClosedError):
            processor.apply_sell(portfolio, "SUPRIYA", 1, Decimal("657.25"))

        assert portfolio.cash_balance == Decimal("43981.25")


class TestPartialSell:
    """Selling part of a position."""

    def test_partial_sell_scales_allocation(self, processor):
        """Selling 5 of 10 at 120 adds 600 to cash and halves the allocation."""
        holding = make_holding("TCS", 10, "100.00")
        portfolio = make_portfolio("4000.00", holding)

        outcome = processor.apply_sell(portfolio, "TCS", 5, Decimal("120"))

        assert holding.quantity == 5
        assert portfolio.cash_balance == Decimal("4600.00")
        assert holding.minimum_investment_value_stock == Decimal("500.00")
        assert holding.status == HoldingStatus.PARTIAL_SELL
        assert holding.buy_price == Decimal("100.00")
        assert outcome.realized_pnl == Decimal("100.00")
        assert outcome.realized_pnl_percent == Decimal("20.00")
        assert outcome.state_after == HoldingState.PARTIALLY_SOLD

    def test_allocation_rounded_on_every_sell(self, processor):
        """Scaled allocation is rounded to 0.01 after each partial sell."""
        holding = make_holding("INFY", 3, "333.33", allocation="1000.00")
        portfolio = make_portfolio("0", holding)

        processor.apply_sell(portfolio, "INFY", 1, Decimal("340"))

        assert holding.minimum_investment_value_stock == Decimal("666.67")

    def test_realized_pnl_accumulates(self, processor):
        """Realized P&L of successive sells adds up on the holding."""
        holding = make_holding("TCS", 10, "100.00")
        portfolio = make_portfolio("0", holding)

        processor.apply_sell(portfolio, "TCS", 4, Decimal("110"))
        processor.apply_sell(portfolio, "TCS", 6, Decimal("90"))

        assert holding.realized_pnl == Decimal("40.00") + Decimal("-60.00")
        assert portfolio.cash_balance == Decimal("980.00")


class TestSellRejections:
    """Invalid sells leave the portfolio untouched."""

    def test_more_than_held(self, processor):
        """Selling more shares than held raises InvalidQuantity."""
        holding = make_holding("TCS", 10, "100.00")
        portfolio = make_portfolio("500.00", holding)

        with pytest.raises(InvalidQuantityError) as exc_info:
            processor.apply_sell(portfolio, "TCS", 11, Decimal("120"))

        assert exc_info.value.requested == 11
        assert exc_info.value.held == 10
        assert holding.quantity == 10
        assert portfolio.cash_balance == Decimal("500.00")

    def test_never_held(self, processor):
        """Selling a symbol the portfolio never held raises HoldingNotFound."""
        portfolio = make_portfolio("500.00")

        with pytest.raises(HoldingNotFoundError):
            processor.apply_sell(portfolio, "TCS", 1, Decimal("120"))

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity(self, processor, quantity):
        """Zero or negative quantities are rejected."""
        portfolio = make_portfolio("500.00", make_holding("TCS", 10, "100.00"))

        with pytest.raises(InvalidQuantityError):
            processor.apply_sell(portfolio, "TCS", quantity, Decimal("120"))

    def test_non_positive_price(self, processor):
        """A zero price is rejected."""
        portfolio = make_portfolio("500.00", make_holding("TCS", 10, "100.00"))

        with pytest.raises(ValidationError):
            processor.apply_sell(portfolio, "TCS", 1, Decimal("0"))


# =============================================================================
# BUY
# =============================================================================

class TestBuy:
    """Buying into empty and existing positions."""

    def test_buy_into_empty_holding(self, processor):
        """Buying 10 at 100 with 5000 cash opens a fresh holding."""
        portfolio = make_portfolio("5000.00")

        outcome = processor.apply_buy(portfolio, "TCS", 10, Decimal("100.00"), sector="IT")

        holding = portfolio.holdings[0]
        assert portfolio.cash_balance == Decimal("4000.00")
        assert holding.quantity == 10
        assert holding.buy_price == Decimal("100.00")
        assert holding.minimum_investment_value_stock == Decimal("1000.00")
        assert holding.status == HoldingStatus.FRESH_BUY
        assert holding.sector == "IT"
        assert outcome.transaction_type == TransactionType.BUY
        assert outcome.state_before == HoldingState.NO_POSITION

    def test_insufficient_cash(self, processor):
        """A buy costing more than the cash balance is rejected without changes."""
        portfolio = make_portfolio("999.99")

        with pytest.raises(InsufficientCashError) as exc_info:
            processor.apply_buy(portfolio, "TCS", 10, Decimal("100.00"))

        assert exc_info.value.required == Decimal("1000.00")
        assert portfolio.cash_balance == Decimal("999.99")
        assert portfolio.holdings == []

    def test_buy_spending_all_cash(self, processor):
        """Cash may reach exactly zero."""
        portfolio = make_portfolio("1000.00")

        processor.apply_buy(portfolio, "TCS", 10, Decimal("100.00"))

        assert portfolio.cash_balance == Decimal("0.00")

    def test_addon_buy_blends_price(self, processor):
        """Adding to a position blends the buy price and grows the allocation."""
        holding = make_holding("TCS", 10, "100.00")
        portfolio = make_portfolio("5000.00", holding)

        processor.apply_buy(portfolio, "TCS", 5, Decimal("130.00"))

        assert holding.quantity == 15
        assert holding.buy_price == Decimal("110.0000")
        assert holding.minimum_investment_value_stock == Decimal("1650.00")
        assert holding.status == HoldingStatus.ADDON_BUY
        assert portfolio.cash_balance == Decimal("4350.00")

    def test_buy_after_close_opens_new_holding(self, processor):
        """The closed holding stays frozen; a new buy opens a new holding."""
        closed = make_holding("SUPRIYA", 25, "850.00")
        portfolio = make_portfolio("27550.00", closed)
        processor.apply_sell(portfolio, "SUPRIYA", 25, Decimal("657.25"))

        processor.apply_buy(portfolio, "SUPRIYA", 10, Decimal("600"))

        assert len(portfolio.holdings) == 2
        assert closed.quantity == 0
        assert closed.buy_price == Decimal("850.00")
        assert portfolio.holdings[1].quantity == 10

    def test_symbol_is_normalized(self, processor):
        """Symbols are trimmed and upper-cased."""
        portfolio = make_portfolio("5000.00")

        outcome = processor.apply_buy(portfolio, "  tcs ", 1, Decimal("100"))

        assert outcome.symbol == "TCS"

    def test_unknown_exchange(self, processor):
        """An unknown exchange code is a validation error."""
        portfolio = make_portfolio("5000.00")

        with pytest.raises(ValidationError):
            processor.apply_buy(portfolio, "TCS", 1, Decimal("100"), exchange="NYSE")


class TestCashRounding:
    """Cash moves in whole paise even for 4 dp prices."""

    def test_sell_amount_rounded_to_paise(self, processor):
        """Proceeds of 1 x 657.2525 credit 657.25."""
        holding = make_holding("SUPRIYA", 2, "600.00")
        portfolio = make_portfolio("100.00", holding)

        outcome = processor.apply_sell(portfolio, "SUPRIYA", 1, Decimal("657.2525"))

        assert outcome.amount == Decimal("657.25")
        assert portfolio.cash_balance == Decimal("757.25")

    def test_buy_amount_rounded_half_up(self, processor):
        """Cost of 3 x 100.3333 (300.9999) debits 301.00."""
        portfolio = make_portfolio("1000.00")

        outcome = processor.apply_buy(portfolio, "TCS", 3, Decimal("100.3333"))

        assert outcome.amount == Decimal("301.00")
        assert portfolio.cash_balance == Decimal("699.00")
        assert portfolio.holdings[0].buy_price == Decimal("100.3333")


class TestNonNegativeCash:
    """Cash never goes negative over a sequence of transactions."""

    def test_sequence_keeps_cash_non_negative(self, processor):
        """Valid steps apply, the overspending buy is rejected, cash stays ≥ 0."""
        portfolio = make_portfolio("2000.00")
        steps = [
            ("buy", "TCS", 10, "100"),
            ("buy", "INFY", 5, "150"),
            ("sell", "TCS", 4, "95"),
            ("buy", "HDFC", 10, "100"),
            ("sell", "INFY", 5, "160"),
            ("buy", "HDFC", 6, "100"),
        ]

        for kind, symbol, quantity, price in steps:
            try:
                if kind == "buy":
                    processor.apply_buy(portfolio, symbol, quantity, Decimal(price))
                else:
                    processor.apply_sell(portfolio, symbol, quantity, Decimal(price))
            except InsufficientCashError:
                pass
            assert portfolio.cash_balance >= 0

        # 2000 - 1000 - 750 + 380 (HDFC 1000 rejected) + 800 - 600
        assert portfolio.cash_balance == Decimal("830.00")
