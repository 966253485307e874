# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Fake quote provider
- Sample data factories
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
# Rate limits are exercised explicitly in test_rate_limit.py
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from modelfolio.models import (
    Base,
    Exchange,
    Holding,
    HoldingStatus,
    Portfolio,
    StockSymbol,
)
from modelfolio.services.exceptions import TickerNotFoundError
from modelfolio.services.market_data.base import PriceQuoteProvider, Quote


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Session factory bound to the test engine (for services opening their own sessions)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Iterator[Session]:
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# FAKE QUOTE PROVIDER
# =============================================================================

class FakeQuoteProvider(PriceQuoteProvider):
    """
    In-memory PriceQuoteProvider for testing.

    Allows configuring prices per ticker and simulating errors. An error can
    be a single exception (raised on every call) or a list consumed one per
    call, so "fails twice then succeeds" is easy to express.
    """

    def __init__(self, prices: dict[str, Decimal] | None = None):
        self.prices: dict[str, Decimal] = dict(prices or {})
        self.errors: dict[str, Exception | list[Exception]] = {}
        self.available = True
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "fake"

    def set_price(self, ticker: str, price: Decimal | str) -> None:
        self.prices[ticker] = Decimal(str(price))

    def fail(self, ticker: str, error: Exception | list[Exception]) -> None:
        self.errors[ticker] = error

    def call_count(self, ticker: str) -> int:
        return self.calls.count(ticker)

    async def fetch(self, ticker: str, exchange: str) -> Quote:
        self.calls.append(ticker)

        error = self.errors.get(ticker)
        if isinstance(error, list):
            if error:
                raise error.pop(0)
        elif error is not None:
            raise error

        if ticker not in self.prices:
            raise TickerNotFoundError(ticker=ticker, exchange=exchange, provider=self.name)
        return Quote(price=self.prices[ticker], as_of=datetime.now(timezone.utc))

    async def is_available(self) -> bool:
        return self.available


@pytest.fixture
def fake_provider() -> FakeQuoteProvider:
    return FakeQuoteProvider()


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def add_symbol(
        db: Session,
        ticker: str,
        current_price: Decimal | str | None = None,
        exchange: Exchange = Exchange.NSE,
        today_closing_price: Decimal | str | None = None,
        closing_price_updated_at: datetime | None = None,
) -> StockSymbol:
    symbol = StockSymbol(
        ticker=ticker,
        exchange=exchange,
        name=ticker.title(),
        current_price=Decimal(str(current_price)) if current_price is not None else None,
        today_closing_price=Decimal(str(today_closing_price)) if today_closing_price is not None else None,
        closing_price_updated_at=closing_price_updated_at,
    )
    db.add(symbol)
    db.commit()
    return symbol


def add_portfolio(
        db: Session,
        name: str = "Growth",
        cash: Decimal | str = "100000",
        min_investment: Decimal | str = "0",
) -> Portfolio:
    portfolio = Portfolio(name=name, cash_balance=Decimal(str(cash)), min_investment=Decimal(str(min_investment)))
    db.add(portfolio)
    db.commit()
    return portfolio


def add_holding(
        db: Session,
        portfolio: Portfolio,
        symbol: str,
        quantity: int,
        buy_price: Decimal | str,
        minimum_investment_value_stock: Decimal | str | None = None,
        exchange: Exchange = Exchange.NSE,
        status: HoldingStatus = HoldingStatus.HOLD,
) -> Holding:
    buy_price = Decimal(str(buy_price))
    holding = Holding(
        portfolio_id=portfolio.id,
        symbol=symbol,
        exchange=exchange,
        buy_price=buy_price,
        quantity=quantity,
        status=status,
        minimum_investment_value_stock=(
            Decimal(str(minimum_investment_value_stock))
            if minimum_investment_value_stock is not None
            else buy_price * quantity
        ),
        realized_pnl=Decimal("0"),
    )
    db.add(holding)
    db.commit()
    db.refresh(portfolio)
    return holding
