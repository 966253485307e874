# tests/services/test_transaction_service.py
"""
Tests for TransactionService: atomic commit and optimistic concurrency.
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from modelfolio.models import Base, Holding, HoldingStatus, Portfolio, PortfolioTransaction, TransactionType
from modelfolio.services.exceptions import (
    ConcurrentModificationError,
    InsufficientCashError,
    PortfolioNotFoundError,
    PriceUnavailableError,
    SymbolNotFoundError,
)
from modelfolio.services.transactions import TransactionProcessor, TransactionService
from tests.conftest import add_holding, add_portfolio, add_symbol


def count_transactions(db) -> int:
    return db.scalar(select(func.count()).select_from(PortfolioTransaction))


class TestBuy:
    """Buys through the service."""

    def test_buy_persists_holding_cash_and_record(self, db):
        """A buy commits the holding, the cash change and a transaction record."""
        add_symbol(db, "TCS", current_price="100")
        portfolio = add_portfolio(db, cash="5000.00")

        outcome = TransactionService().buy(db, portfolio.id, "TCS", 10, Decimal("100.00"))

        db.expire_all()
        stored = db.get(Portfolio, portfolio.id)
        assert stored.cash_balance == Decimal("4000.00")
        assert stored.holdings[0].quantity == 10
        assert stored.holdings[0].minimum_investment_value_stock == Decimal("1000.00")
        record = db.scalars(select(PortfolioTransaction)).one()
        assert record.transaction_type == TransactionType.BUY
        assert record.cash_before == Decimal("5000.00")
        assert record.cash_after == Decimal("4000.00")
        assert outcome.amount == Decimal("1000.00")

    def test_rejected_buy_persists_nothing(self, db):
        """InsufficientCash leaves cash, holdings and the ledger unchanged."""
        add_symbol(db, "TCS", current_price="100")
        portfolio = add_portfolio(db, cash="500.00")

        with pytest.raises(InsufficientCashError):
            TransactionService().buy(db, portfolio.id, "TCS", 10, Decimal("100.00"))

        db.expire_all()
        stored = db.get(Portfolio, portfolio.id)
        assert stored.cash_balance == Decimal("500.00")
        assert stored.holdings == []
        assert count_transactions(db) == 0

    def test_unknown_symbol(self, db):
        """Buying a symbol missing from the registry is rejected."""
        portfolio = add_portfolio(db, cash="5000.00")

        with pytest.raises(SymbolNotFoundError):
            TransactionService().buy(db, portfolio.id, "NOPE", 1, Decimal("10"))

        assert count_transactions(db) == 0

    def test_unknown_portfolio(self, db):
        """A missing portfolio raises PortfolioNotFound."""
        add_symbol(db, "TCS", current_price="100")

        with pytest.raises(PortfolioNotFoundError):
            TransactionService().buy(db, 999, "TCS", 1, Decimal("100"))

    def test_version_increments(self, db):
        """Each applied transaction bumps the portfolio version."""
        add_symbol(db, "TCS", current_price="100")
        portfolio = add_portfolio(db, cash="5000.00")
        service = TransactionService()

        service.buy(db, portfolio.id, "TCS", 1, Decimal("100"))
        service.buy(db, portfolio.id, "TCS", 1, Decimal("100"))

        db.expire_all()
        assert db.get(Portfolio, portfolio.id).version == 3


class TestSell:
    """Sells through the service."""

    def test_supriya_complete_sell(self, db):
        """Selling 25 SUPRIYA at 657.25 credits exactly the proceeds."""
        add_symbol(db, "SUPRIYA", current_price="657.25")
        portfolio = add_portfolio(db, cash="27550.00")
        add_holding(db, portfolio, "SUPRIYA", 25, "850.00")

        outcome = TransactionService().sell(db, portfolio.id, "SUPRIYA", 25, Decimal("657.25"))

        db.expire_all()
        stored = db.get(Portfolio, portfolio.id)
        holding = stored.holdings[0]
        assert stored.cash_balance == Decimal("43981.25")
        assert outcome.realized_pnl == Decimal("-4818.75")
        assert holding.quantity == 0
        assert holding.status == HoldingStatus.SELL
        assert holding.buy_price == Decimal("850.00")
        assert holding.minimum_investment_value_stock == Decimal("21250.00")
        assert holding.realized_pnl == Decimal("-4818.75")

    def test_sell_uses_registry_price(self, db):
        """Without a price the symbol's current price is used."""
        add_symbol(db, "TCS", current_price="120")
        portfolio = add_portfolio(db, cash="4000.00")
        add_holding(db, portfolio, "TCS", 10, "100.00")

        outcome = TransactionService().sell(db, portfolio.id, "TCS", 5)

        assert outcome.price == Decimal("120")
        db.expire_all()
        assert db.get(Portfolio, portfolio.id).cash_balance == Decimal("4600.00")

    def test_sell_without_any_price(self, db):
        """No price given and none in the registry raises PriceUnavailable."""
        add_symbol(db, "TCS", current_price=None)
        portfolio = add_portfolio(db, cash="4000.00")
        add_holding(db, portfolio, "TCS", 10, "100.00")

        with pytest.raises(PriceUnavailableError):
            TransactionService().sell(db, portfolio.id, "TCS", 5)

        db.expire_all()
        assert db.get(Holding, portfolio.holdings[0].id).quantity == 10


# =============================================================================
# OPTIMISTIC CONCURRENCY
# =============================================================================

class InterferingProcessor(TransactionProcessor):
    """Commits a competing cash change from another session before the first N buys."""

    def __init__(self, other_sessions, portfolio_id: int, interfere_times: int):
        super().__init__()
        self._other_sessions = other_sessions
        self._portfolio_id = portfolio_id
        self.remaining = interfere_times

    def apply_buy(self, portfolio, *args, **kwargs):
        if self.remaining > 0:
            self.remaining -= 1
            with self._other_sessions() as other:
                competitor = other.get(Portfolio, self._portfolio_id)
                competitor.cash_balance -= Decimal("10")
                other.commit()
        return super().apply_buy(portfolio, *args, **kwargs)


@pytest.fixture
def file_sessions(tmp_path):
    """Two sessions need two connections, so use a file database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


class TestConcurrentModification:
    """A competing commit between read and write is detected."""

    def test_conflict_without_retry_budget(self, file_sessions):
        """With one attempt the conflict surfaces and nothing of the buy persists."""
        with file_sessions() as db:
            add_symbol(db, "TCS", current_price="100")
            portfolio = add_portfolio(db, cash="5000.00")
            portfolio_id = portfolio.id
            processor = InterferingProcessor(file_sessions, portfolio_id, interfere_times=1)

            with pytest.raises(ConcurrentModificationError):
                TransactionService(processor=processor, max_attempts=1).buy(
                    db, portfolio_id, "TCS", 10, Decimal("100")
                )

        with file_sessions() as check:
            stored = check.get(Portfolio, portfolio_id)
            assert stored.cash_balance == Decimal("4990.00")
            assert stored.holdings == []
            assert count_transactions(check) == 0

    def test_retry_from_fresh_read(self, file_sessions):
        """The retry re-reads the portfolio and applies on top of the competing change."""
        with file_sessions() as db:
            add_symbol(db, "TCS", current_price="100")
            portfolio = add_portfolio(db, cash="5000.00")
            portfolio_id = portfolio.id
            processor = InterferingProcessor(file_sessions, portfolio_id, interfere_times=1)

            outcome = TransactionService(processor=processor, max_attempts=2).buy(
                db, portfolio_id, "TCS", 10, Decimal("100")
            )

        assert outcome.cash_before == Decimal("4990.00")
        with file_sessions() as check:
            stored = check.get(Portfolio, portfolio_id)
            assert stored.cash_balance == Decimal("3990.00")
            assert stored.holdings[0].quantity == 10
            assert count_transactions(check) == 1

    def test_gives_up_after_max_attempts(self, file_sessions):
        """Conflicts on every attempt end in ConcurrentModification with the attempt count."""
        with file_sessions() as db:
            add_symbol(db, "TCS", current_price="100")
            portfolio = add_portfolio(db, cash="5000.00")
            portfolio_id = portfolio.id
            processor = InterferingProcessor(file_sessions, portfolio_id, interfere_times=5)

            with pytest.raises(ConcurrentModificationError) as exc_info:
                TransactionService(processor=processor, max_attempts=3).buy(
                    db, portfolio_id, "TCS", 10, Decimal("100")
                )

        assert exc_info.value.attempts == 3
        assert processor.remaining == 2
