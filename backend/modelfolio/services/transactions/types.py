# backend/modelfolio/services/transactions/types.py
"""
Internal data types for transaction application.

State machine of one holding:

    NO_POSITION --buy--> OPEN --buy--> OPEN
    OPEN --partial sell--> PARTIALLY_SOLD --buy--> OPEN
    OPEN / PARTIALLY_SOLD --sell all--> CLOSED

CLOSED is terminal for that holding row: a later buy of the same symbol
opens a NEW holding, and the closed one stays for the audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from modelfolio.models import TransactionType


class HoldingState(str, Enum):
    NO_POSITION = "no-position"
    OPEN = "open"
    PARTIALLY_SOLD = "partially-sold"
    CLOSED = "closed"


@dataclass(frozen=True)
class TransactionOutcome:
    """
    Result of one applied buy or sell.

    Attributes:
        transaction_type: BUY or SELL
        symbol: Ticker
        exchange: Exchange code
        quantity: Shares bought or sold
        price: Price per share
        amount: price × quantity; the exact cash movement
        cash_before: Cash balance before the transaction
        cash_after: Cash balance after the transaction
        realized_pnl: amount - buy_price × quantity (sells only, never in cash)
        realized_pnl_percent: realized_pnl as % of the cost sold (sells only)
        state_before: Holding state before
        state_after: Holding state after
        remaining_quantity: Shares held after the transaction
        buy_price: Blended buy price after the transaction
        minimum_investment_value_stock: Allocation after the transaction
    """

    transaction_type: TransactionType
    symbol: str
    exchange: str
    quantity: int
    price: Decimal
    amount: Decimal
    cash_before: Decimal
    cash_after: Decimal
    realized_pnl: Decimal | None
    realized_pnl_percent: Decimal | None
    state_before: HoldingState
    state_after: HoldingState
    remaining_quantity: int
    buy_price: Decimal
    minimum_investment_value_stock: Decimal

    @property
    def cash_change(self) -> Decimal:
        return self.cash_after - self.cash_before
