# backend/modelfolio/services/transactions/processor.py
"""
Transaction processor - applies a buy or sell to a portfolio in memory.

The processor mutates the Portfolio / Holding objects it is given and never
touches the database; TransactionService owns loading, committing and
conflict handling. Every input is validated BEFORE the first mutation, so a
rejected transaction leaves the objects exactly as they were.

Cash rules:
    buy:  cash -= price × quantity          (InsufficientCash if cash < cost)
    sell: cash += price × quantity          (exactly the proceeds)

Realized P&L of a sell (proceeds - buy_price × quantity) is recorded on the
holding and the trade record for reporting. It is NEVER added to cash: the
proceeds already contain it.

Allocation rules (minimum_investment_value_stock):
    buy:           += price × quantity
    partial sell:  × remaining / previous, rounded to 0.01 on every sell
    complete sell: frozen, together with buy_price
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from modelfolio.models import Exchange, Holding, HoldingStatus, Portfolio, TransactionType
from modelfolio.services.constants import MONEY_QUANT, PERCENT_QUANT, PRICE_QUANT, ZERO, HUNDRED
from modelfolio.services.exceptions import (
    AlreadyClosedError,
    HoldingNotFoundError,
    InsufficientCashError,
    InvalidQuantityError,
    ValidationError,
)
from modelfolio.services.transactions.types import HoldingState, TransactionOutcome

logger = logging.getLogger(__name__)


def _money(value: Decimal) -> Decimal:
    """Cash amounts are kept to 0.01 even though prices carry 4 dp."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _exchange(value: Exchange | str) -> Exchange:
    try:
        return Exchange(getattr(value, "value", value))
    except ValueError:
        raise ValidationError(f"Unknown exchange: '{value}'", field="exchange")


class TransactionProcessor:
    """
    Holding state machine for buys and sells.

    Stateless apart from the clock used to stamp sale dates.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # STATE
    # =========================================================================

    @staticmethod
    def holding_state(holding: Holding | None) -> HoldingState:
        if holding is None:
            return HoldingState.NO_POSITION
        if holding.quantity == 0:
            return HoldingState.CLOSED
        if holding.status == HoldingStatus.PARTIAL_SELL:
            return HoldingState.PARTIALLY_SOLD
        return HoldingState.OPEN

    @staticmethod
    def find_open_holding(portfolio: Portfolio, symbol: str, exchange: Exchange) -> Holding | None:
        for holding in portfolio.holdings:
            if holding.symbol == symbol and holding.exchange == exchange and holding.quantity > 0:
                return holding
        return None

    @staticmethod
    def _has_closed_holding(portfolio: Portfolio, symbol: str, exchange: Exchange) -> bool:
        return any(
            h.symbol == symbol and h.exchange == exchange and h.quantity == 0
            for h in portfolio.holdings
        )

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def _validate_quantity(quantity: int) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantityError(f"Quantity must be a whole number of shares, got {quantity!r}")
        if quantity <= 0:
            raise InvalidQuantityError(f"Quantity must be positive, got {quantity}", requested=quantity)
        return quantity

    @staticmethod
    def _validate_price(price: Decimal | int | str) -> Decimal:
        try:
            value = price if isinstance(price, Decimal) else Decimal(str(price))
        except InvalidOperation:
            raise ValidationError(f"Invalid price: {price!r}", field="price")
        if not value.is_finite() or value <= ZERO:
            raise ValidationError(f"Price must be positive, got {price}", field="price")
        return value

    @staticmethod
    def _normalize_symbol(symbol: str) -> str:
        normalized = (symbol or "").strip().upper()
        if not normalized:
            raise ValidationError("Symbol is required", field="symbol")
        return normalized

    # =========================================================================
    # BUY
    # =========================================================================

    def apply_buy(
            self,
            portfolio: Portfolio,
            symbol: str,
            quantity: int,
            price: Decimal | int | str,
            exchange: Exchange | str = Exchange.NSE,
            sector: str | None = None,
    ) -> TransactionOutcome:
        """
        Buy shares, opening a holding or adding to the open one.

        Args:
            portfolio: Portfolio to mutate (holdings loaded)
            symbol: Ticker
            quantity: Shares to buy (> 0)
            price: Purchase price per share (> 0)
            exchange: Exchange of the symbol
            sector: Sector, used when a new holding is created

        Returns:
            TransactionOutcome

        Raises:
            InvalidQuantityError: If quantity is not a positive integer
            ValidationError: If price, symbol or exchange is invalid
            InsufficientCashError: If the cost exceeds the cash balance
        """
        symbol = self._normalize_symbol(symbol)
        exchange = _exchange(exchange)
        quantity = self._validate_quantity(quantity)
        price = self._validate_price(price)

        cash_before = portfolio.cash_balance or ZERO
        amount = _money(price * quantity)
        if amount > cash_before:
            raise InsufficientCashError(required=amount, available=cash_before)

        holding = self.find_open_holding(portfolio, symbol, exchange)
        state_before = self.holding_state(holding)

        if holding is None:
            holding = Holding(
                symbol=symbol,
                exchange=exchange,
                sector=sector,
                buy_price=price.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP),
                quantity=quantity,
                status=HoldingStatus.FRESH_BUY,
                minimum_investment_value_stock=amount,
                realized_pnl=ZERO,
            )
            portfolio.holdings.append(holding)
        else:
            total_quantity = holding.quantity + quantity
            blended = (holding.buy_price * holding.quantity + price * quantity) / total_quantity
            holding.buy_price = blended.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)
            holding.quantity = total_quantity
            holding.minimum_investment_value_stock = (holding.minimum_investment_value_stock or ZERO) + amount
            holding.status = HoldingStatus.ADDON_BUY
            if sector and not holding.sector:
                holding.sector = sector

        portfolio.cash_balance = cash_before - amount

        logger.info(
            f"BUY {quantity} {symbol} @ {price} in portfolio {portfolio.id}: "
            f"cash {cash_before} -> {portfolio.cash_balance}, "
            f"holding {state_before.value} -> {HoldingState.OPEN.value}"
        )

        return TransactionOutcome(
            transaction_type=TransactionType.BUY,
            symbol=symbol,
            exchange=exchange.value,
            quantity=quantity,
            price=price,
            amount=amount,
            cash_before=cash_before,
            cash_after=portfolio.cash_balance,
            realized_pnl=None,
            realized_pnl_percent=None,
            state_before=state_before,
            state_after=HoldingState.OPEN,
            remaining_quantity=holding.quantity,
            buy_price=holding.buy_price,
            minimum_investment_value_stock=holding.minimum_investment_value_stock,
        )

    # =========================================================================
    # SELL
    # =========================================================================

    def apply_sell(
            self,
            portfolio: Portfolio,
            symbol: str,
            quantity: int,
            price: Decimal | int | str,
            exchange: Exchange | str = Exchange.NSE,
    ) -> TransactionOutcome:
        """
        Sell shares of the open holding of a symbol.

        Args:
            portfolio: Portfolio to mutate (holdings loaded)
            symbol: Ticker
            quantity: Shares to sell (> 0, <= shares held)
            price: Current market price per share (> 0)
            exchange: Exchange of the symbol

        Returns:
            TransactionOutcome with the realized P&L of this sell

        Raises:
            InvalidQuantityError: If quantity is not positive or exceeds the holding
            AlreadyClosedError: If the symbol's holding is already fully sold
            HoldingNotFoundError: If the portfolio never held the symbol
            ValidationError: If price, symbol or exchange is invalid
        """
        symbol = self._normalize_symbol(symbol)
        exchange = _exchange(exchange)
        quantity = self._validate_quantity(quantity)
        price = self._validate_price(price)

        holding = self.find_open_holding(portfolio, symbol, exchange)
        if holding is None:
            if self._has_closed_holding(portfolio, symbol, exchange):
                raise AlreadyClosedError(symbol)
            raise HoldingNotFoundError(portfolio.id, symbol)

        previous_quantity = holding.quantity
        if quantity > previous_quantity:
            raise InvalidQuantityError(
                f"Cannot sell {quantity} {symbol}: only {previous_quantity} held",
                requested=quantity,
                held=previous_quantity,
            )

        state_before = self.holding_state(holding)
        cash_before = portfolio.cash_balance or ZERO

        proceeds = _money(price * quantity)
        cost_sold = _money(holding.buy_price * quantity)
        realized = proceeds - cost_sold
        realized_pct = (
            (realized / cost_sold * HUNDRED).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
            if cost_sold != ZERO else ZERO.quantize(PERCENT_QUANT)
        )

        remaining = previous_quantity - quantity
        now = self._clock()

        if remaining == 0:
            # buy_price and minimum_investment_value_stock are frozen from here on
            holding.quantity = 0
            holding.status = HoldingStatus.SELL
            holding.sold_at = now
            holding.final_sale_price = price
            state_after = HoldingState.CLOSED
        else:
            holding.minimum_investment_value_stock = _money(
                holding.minimum_investment_value_stock * remaining / previous_quantity
            )
            holding.quantity = remaining
            holding.status = HoldingStatus.PARTIAL_SELL
            state_after = HoldingState.PARTIALLY_SOLD

        holding.realized_pnl = (holding.realized_pnl or ZERO) + realized
        holding.last_sale_at = now

        portfolio.cash_balance = cash_before + proceeds

        logger.info(
            f"SELL {quantity} {symbol} @ {price} in portfolio {portfolio.id}: "
            f"proceeds {proceeds}, realized P&L {realized}, "
            f"cash {cash_before} -> {portfolio.cash_balance}, "
            f"holding {state_before.value} -> {state_after.value}"
        )

        return TransactionOutcome(
            transaction_type=TransactionType.SELL,
            symbol=symbol,
            exchange=exchange.value,
            quantity=quantity,
            price=price,
            amount=proceeds,
            cash_before=cash_before,
            cash_after=portfolio.cash_balance,
            realized_pnl=realized,
            realized_pnl_percent=realized_pct,
            state_before=state_before,
            state_after=state_after,
            remaining_quantity=holding.quantity,
            buy_price=holding.buy_price,
            minimum_investment_value_stock=holding.minimum_investment_value_stock,
        )
