# backend/modelfolio/services/transactions/service.py
"""
Transaction Service - applies buys and sells atomically.

One call = one database transaction:
    fresh read of the portfolio and its holdings
    → TransactionProcessor mutates them in memory
    → PortfolioTransaction record appended
    → single commit

The commit's UPDATE of the portfolio row is conditional on the version that
was read (Portfolio.version). If another writer committed in between, the
ORM raises StaleDataError, the session is rolled back and the whole call is
retried from a fresh read, up to ``max_attempts`` times. Nothing of a failed
attempt is ever persisted.

Usage:
    service = TransactionService()

    outcome = service.buy(db, portfolio_id=1, symbol="TCS", quantity=10, price=Decimal("3500"))
    outcome = service.sell(db, portfolio_id=1, symbol="TCS", quantity=5)  # registry price
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from modelfolio.config import settings
from modelfolio.models import Exchange, Portfolio, PortfolioTransaction, StockSymbol
from modelfolio.services.exceptions import (
    ConcurrentModificationError,
    PortfolioNotFoundError,
    PriceUnavailableError,
    ServiceError,
    SymbolNotFoundError,
)
from modelfolio.services.transactions.processor import TransactionProcessor
from modelfolio.services.transactions.types import TransactionOutcome

logger = logging.getLogger(__name__)

ApplyFn = Callable[[Session, Portfolio], TransactionOutcome]


class TransactionService:
    """
    Persists TransactionProcessor results with optimistic concurrency.

    Args:
        processor: State machine to apply (injected for tests)
        max_attempts: Attempts on ConcurrentModification before giving up
    """

    def __init__(
            self,
            processor: TransactionProcessor | None = None,
            max_attempts: int | None = None,
    ) -> None:
        self._processor = processor or TransactionProcessor()
        self._max_attempts = max_attempts or settings.transaction_max_attempts

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def buy(
            self,
            db: Session,
            portfolio_id: int,
            symbol: str,
            quantity: int,
            price: Decimal,
            exchange: Exchange | str = Exchange.NSE,
            sector: str | None = None,
    ) -> TransactionOutcome:
        """
        Buy shares for a portfolio.

        Raises:
            PortfolioNotFoundError: If the portfolio doesn't exist
            SymbolNotFoundError: If the symbol is not in the registry
            InsufficientCashError, InvalidQuantityError, ValidationError:
                Transaction rejected, nothing persisted
            ConcurrentModificationError: If every attempt hit a conflict
        """
        def apply(db_: Session, portfolio: Portfolio) -> TransactionOutcome:
            self._get_symbol(db_, symbol, exchange)
            return self._processor.apply_buy(portfolio, symbol, quantity, price, exchange=exchange, sector=sector)

        return self._execute(db, portfolio_id, apply)

    def sell(
            self,
            db: Session,
            portfolio_id: int,
            symbol: str,
            quantity: int,
            price: Decimal | None = None,
            exchange: Exchange | str = Exchange.NSE,
    ) -> TransactionOutcome:
        """
        Sell shares of a portfolio holding.

        Args:
            price: Sale price per share. Defaults to the symbol's current
                   price in the registry.

        Raises:
            PortfolioNotFoundError: If the portfolio doesn't exist
            PriceUnavailableError: If no price was given and the registry has none
            AlreadyClosedError, HoldingNotFoundError, InvalidQuantityError:
                Transaction rejected, nothing persisted
            ConcurrentModificationError: If every attempt hit a conflict
        """
        def apply(db_: Session, portfolio: Portfolio) -> TransactionOutcome:
            sale_price = price
            if sale_price is None:
                sale_price = self._registry_price(db_, symbol, exchange)
            return self._processor.apply_sell(portfolio, symbol, quantity, sale_price, exchange=exchange)

        return self._execute(db, portfolio_id, apply)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _execute(self, db: Session, portfolio_id: int, apply: ApplyFn) -> TransactionOutcome:
        retrying = Retrying(
            retry=retry_if_exception_type(ConcurrentModificationError),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            return retrying(self._apply_once, db, portfolio_id, apply)
        except RetryError as e:
            raise ConcurrentModificationError(portfolio_id, attempts=self._max_attempts) from e.last_attempt.exception()

    def _apply_once(self, db: Session, portfolio_id: int, apply: ApplyFn) -> TransactionOutcome:
        # Fresh read: any stale copy in the session's identity map is overwritten
        portfolio = db.get(
            Portfolio,
            portfolio_id,
            options=[selectinload(Portfolio.holdings)],
            populate_existing=True,
        )
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        try:
            outcome = apply(db, portfolio)
            db.add(PortfolioTransaction(
                portfolio_id=portfolio.id,
                symbol=outcome.symbol,
                exchange=Exchange(outcome.exchange),
                transaction_type=outcome.transaction_type,
                quantity=outcome.quantity,
                price=outcome.price,
                amount=outcome.amount,
                cash_before=outcome.cash_before,
                cash_after=outcome.cash_after,
                realized_pnl=outcome.realized_pnl,
            ))
            db.commit()
        except StaleDataError as e:
            db.rollback()
            logger.warning(f"Concurrent modification of portfolio {portfolio_id}: {e}")
            raise ConcurrentModificationError(portfolio_id) from e
        except ServiceError:
            db.rollback()
            raise

        return outcome

    # =========================================================================
    # SYMBOL REGISTRY
    # =========================================================================

    @staticmethod
    def _get_symbol(db: Session, symbol: str, exchange: Exchange | str) -> StockSymbol:
        ticker = (symbol or "").strip().upper()
        exchange_code = getattr(exchange, "value", exchange)
        stock = db.scalar(
            select(StockSymbol).where(
                StockSymbol.ticker == ticker,
                StockSymbol.exchange == exchange_code,
            )
        )
        if stock is None:
            raise SymbolNotFoundError(ticker, exchange_code)
        return stock

    def _registry_price(self, db: Session, symbol: str, exchange: Exchange | str) -> Decimal:
        stock = self._get_symbol(db, symbol, exchange)
        if stock.current_price is None:
            raise PriceUnavailableError(stock.ticker, "symbol has no current price")
        return stock.current_price
