# backend/modelfolio/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, ForeignKey, Enum, Numeric, Integer, UniqueConstraint, JSON, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class Exchange(str, enum.Enum):
    NSE = "NSE"
    BSE = "BSE"


class HoldingStatus(str, enum.Enum):
    """
    Display status of a holding, set by the last transaction applied to it.

    FRESH_BUY and ADDON_BUY mark buys, PARTIAL_SELL a sell that left shares,
    SELL a holding whose quantity reached zero. HOLD is the neutral state for
    positions created outside the transaction flow (admin seeding, imports).
    """
    HOLD = "Hold"
    FRESH_BUY = "Fresh-Buy"
    PARTIAL_SELL = "partial-sell"
    ADDON_BUY = "addon-buy"
    SELL = "Sell"


class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class StockSymbol(Base):
    """
    Symbol registry shared by all portfolios.

    A symbol is uniquely identified by ticker AND exchange. Only the price
    ingestion service writes the price columns.
    """
    __tablename__ = "stock_symbols"
    __table_args__ = (
        UniqueConstraint('ticker', 'exchange', name='uq_symbol_ticker_exchange'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    ticker: Mapped[str] = mapped_column(String, index=True)  # e.g. "SUPRIYA"
    exchange: Mapped[Exchange] = mapped_column(Enum(Exchange), default=Exchange.NSE)
    name: Mapped[str | None] = mapped_column(String)

    current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    previous_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))

    # Set only by closing-price ingestion runs
    today_closing_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    closing_price_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Portfolio(Base):
    """
    Aggregate root: cash plus an ordered list of holdings.

    ``version`` is the optimistic concurrency counter. Every UPDATE issued by
    the ORM is conditional on the version that was read, so two transactions
    applied to the same portfolio cannot silently overwrite each other's cash.
    """
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, unique=True)
    cash_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    min_investment: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    holdings: Mapped[list["Holding"]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan",
        order_by="Holding.id",
    )
    transactions: Mapped[list["PortfolioTransaction"]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan",
    )
    price_logs: Mapped[list["PriceLog"]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}


class Holding(Base):
    """
    One position inside a portfolio.

    Holdings are never deleted. A fully sold holding keeps quantity = 0 and
    its buy_price and minimum_investment_value_stock are frozen from then on.

    The derived columns (current_price onwards) are written only by the
    valuation engine and are pure functions of quantity, buy_price and the
    effective market price.
    """
    __tablename__ = "holdings"
    __table_args__ = (
        Index('ix_holdings_portfolio_symbol', 'portfolio_id', 'symbol'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String)
    exchange: Mapped[Exchange] = mapped_column(Enum(Exchange), default=Exchange.NSE)
    sector: Mapped[str | None] = mapped_column(String)

    buy_price: Mapped[Decimal] = mapped_column(Numeric(18, 4))  # Blended average cost
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[HoldingStatus] = mapped_column(Enum(HoldingStatus), default=HoldingStatus.FRESH_BUY)

    # Capital allocated to this position, not the live cost basis
    minimum_investment_value_stock: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))

    # Cumulative realized P&L of all sells (reporting only, never part of cash)
    realized_pnl: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    last_sale_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    final_sale_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))

    # Derived (valuation engine)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    investment_value_at_buy: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    investment_value_at_market: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    unrealized_pnl: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    unrealized_pnl_percent: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="holdings")


class PortfolioTransaction(Base):
    """Append-only record of every applied buy and sell."""
    __tablename__ = "portfolio_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), index=True)
    symbol: Mapped[str] = mapped_column(String)
    exchange: Mapped[Exchange] = mapped_column(Enum(Exchange))
    transaction_type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    quantity: Mapped[int] = mapped_column(Integer)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 4))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))  # price * quantity
    cash_before: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    cash_after: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    realized_pnl: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))  # Sells only
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="transactions")


class PriceLog(Base):
    """Daily snapshot of a portfolio's value, one row per portfolio per day."""
    __tablename__ = "price_logs"
    __table_args__ = (
        UniqueConstraint('portfolio_id', 'log_date', name='uq_price_log_portfolio_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), index=True)
    log_date: Mapped[date] = mapped_column(Date, index=True)
    portfolio_value: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    cash_remaining: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    update_count: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="price_logs")


class CalculationLogEntry(Base):
    """
    Persisted step of a valuation trace.

    portfolio_id is deliberately not a foreign key: audit entries outlive the
    portfolios they describe until the retention purge removes them.
    """
    __tablename__ = "calculation_log_entries"
    __table_args__ = (
        Index('ix_calc_log_portfolio_created', 'portfolio_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    run_id: Mapped[str] = mapped_column(String, index=True)
    portfolio_id: Mapped[int | None] = mapped_column(Integer)
    portfolio_name: Mapped[str | None] = mapped_column(String)
    step: Mapped[str] = mapped_column(String, index=True)
    level: Mapped[str] = mapped_column(String, default="INFO")
    message: Mapped[str] = mapped_column(String)
    data: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
