# backend/modelfolio/schemas/transactions.py
"""
Pydantic schemas for buy / sell requests.

Validation layers:
- Field constraints: positive whole quantity, positive price, exchange code
- Field validators: ticker normalization (uppercase, trim)
- Service: cash, holding and quantity checks

IMPORTANT: All financial values use Decimal for precision.
Never use float for money!
"""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from modelfolio.models import Exchange, TransactionType
from modelfolio.services.transactions.types import HoldingState


def _normalize_symbol(value: str) -> str:
    value = value.strip().upper()
    if not value:
        raise ValueError("Symbol cannot be empty")
    return value


# =============================================================================
# REQUESTS
# =============================================================================

class BuyRequest(BaseModel):
    """Buy shares at a given price."""

    symbol: str = Field(..., min_length=1, max_length=32, examples=["SUPRIYA"])
    exchange: Exchange = Field(default=Exchange.NSE, description="NSE or BSE")
    quantity: int = Field(..., gt=0, description="Whole number of shares", examples=[10])
    price: Decimal = Field(
        ...,
        gt=0,
        max_digits=18,
        decimal_places=4,
        description="Purchase price per share",
        examples=["512.35"]
    )
    sector: str | None = Field(default=None, max_length=100)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return _normalize_symbol(v)


class SellRequest(BaseModel):
    """
    Sell shares of an open holding.

    When ``price`` is omitted the symbol's current registry price is used.
    """

    symbol: str = Field(..., min_length=1, max_length=32, examples=["SUPRIYA"])
    exchange: Exchange = Field(default=Exchange.NSE, description="NSE or BSE")
    quantity: int = Field(..., gt=0, description="Whole number of shares", examples=[5])
    price: Decimal | None = Field(
        default=None,
        gt=0,
        max_digits=18,
        decimal_places=4,
        description="Sale price per share (default: current market price)",
    )

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return _normalize_symbol(v)


# =============================================================================
# RESPONSE
# =============================================================================

class TransactionResponse(BaseModel):
    """Result of an applied transaction."""

    transaction_type: TransactionType
    symbol: str
    exchange: str
    quantity: int
    price: Decimal
    amount: Decimal = Field(..., description="Cost of a buy, proceeds of a sell")
    cash_before: Decimal
    cash_after: Decimal
    realized_pnl: Decimal | None = Field(default=None, description="Sells only")
    realized_pnl_percent: Decimal | None = None
    holding_state_before: HoldingState
    holding_state_after: HoldingState
    remaining_quantity: int
    buy_price: Decimal
    minimum_investment_value_stock: Decimal
