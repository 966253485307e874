# backend/modelfolio/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
main.py maps them to HTTP responses; every exception carries a machine-readable
``code`` that callers use instead of parsing messages.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── NotFoundError
    │   ├── PortfolioNotFoundError
    │   ├── HoldingNotFoundError
    │   └── SymbolNotFoundError
    ├── TransactionError
    │   ├── InsufficientCashError          (InsufficientCash)
    │   ├── InvalidQuantityError           (InvalidQuantity)
    │   ├── AlreadyClosedError             (AlreadyClosed)
    │   └── ConcurrentModificationError    (ConcurrentModification)
    ├── PriceUnavailableError              (PriceUnavailable)
    ├── ValuationError
    ├── IngestionBatchFailure              (IngestionBatchFailure)
    └── MarketDataError
        ├── ProviderUnavailableError
        ├── TickerNotFoundError
        ├── RateLimitError
        └── FetchTimeoutError

    CircuitBreakerOpen (from circuit_breaker module)
"""

from decimal import Decimal


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error kind
    """

    code = "ServiceError"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    code = "ValidationError"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Portfolio", "Holding")
        resource_id: Identifier of the resource
    """

    code = "NotFound"

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class PortfolioNotFoundError(NotFoundError):
    """Raised when a portfolio cannot be found."""

    code = "PortfolioNotFound"

    def __init__(self, portfolio_id: int) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Portfolio {portfolio_id} not found",
            resource_type="Portfolio",
            resource_id=portfolio_id,
        )


class HoldingNotFoundError(NotFoundError):
    """Raised when a sell targets a symbol the portfolio never held."""

    code = "HoldingNotFound"

    def __init__(self, portfolio_id: int | None, symbol: str) -> None:
        self.portfolio_id = portfolio_id
        self.symbol = symbol
        super().__init__(
            f"Portfolio {portfolio_id} has no holding in '{symbol}'",
            resource_type="Holding",
            resource_id=symbol,
        )


class SymbolNotFoundError(NotFoundError):
    """Raised when a ticker is not in the symbol registry."""

    code = "SymbolNotFound"

    def __init__(self, ticker: str, exchange: str) -> None:
        self.ticker = ticker
        self.exchange = exchange
        super().__init__(
            f"Symbol '{ticker}' on exchange '{exchange}' not found",
            resource_type="StockSymbol",
            resource_id=f"{ticker}:{exchange}",
        )


# =============================================================================
# TRANSACTION ERRORS
# =============================================================================


class TransactionError(ServiceError):
    """
    Base exception for rejected buy/sell transactions.

    A transaction that raises one of these has not changed cash or holdings.
    """

    code = "TransactionError"


class InsufficientCashError(TransactionError):
    """
    Raised when a buy costs more than the available cash.

    Attributes:
        required: Cost of the buy (price * quantity)
        available: Cash balance at the time of the buy
    """

    code = "InsufficientCash"

    def __init__(self, required: Decimal, available: Decimal) -> None:
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient cash: required {required}, available {available} "
            f"(short by {self.shortfall})"
        )


class InvalidQuantityError(TransactionError):
    """Raised when a quantity is not positive or exceeds the shares held."""

    code = "InvalidQuantity"

    def __init__(self, message: str, requested: int | None = None, held: int | None = None) -> None:
        self.requested = requested
        self.held = held
        super().__init__(message)


class AlreadyClosedError(TransactionError):
    """Raised when selling a symbol whose holding is already fully sold."""

    code = "AlreadyClosed"

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"Holding '{symbol}' is already closed")


class ConcurrentModificationError(TransactionError):
    """
    Raised when the portfolio changed between read and write.

    The caller must retry the whole transaction from a fresh read.
    """

    code = "ConcurrentModification"

    def __init__(self, portfolio_id: int, attempts: int = 1) -> None:
        self.portfolio_id = portfolio_id
        self.attempts = attempts
        super().__init__(
            f"Portfolio {portfolio_id} was modified concurrently "
            f"(gave up after {attempts} attempt(s))"
        )


# =============================================================================
# PRICING / VALUATION ERRORS
# =============================================================================


class PriceUnavailableError(ServiceError):
    """
    Raised when a symbol has no usable price.

    During valuation this is recorded as a data-quality issue on the holding
    and never raised; transactions raise it when a sell has no price.
    """

    code = "PriceUnavailable"

    def __init__(self, symbol: str, reason: str = "no price available") -> None:
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Price unavailable for '{symbol}': {reason}")


class ValuationError(ServiceError):
    """Raised when valuing one portfolio fails unexpectedly (CRITICAL_ERROR)."""

    code = "ValuationError"

    def __init__(self, portfolio_id: int, reason: str) -> None:
        self.portfolio_id = portfolio_id
        self.reason = reason
        super().__init__(f"Valuation of portfolio {portfolio_id} failed: {reason}")


class IngestionBatchFailure(ServiceError):
    """
    Raised when one ingestion batch cannot be applied.

    The ingestion run records every symbol of the batch as failed and moves
    on to the next batch.
    """

    code = "IngestionBatchFailure"

    def __init__(self, batch_number: int, symbols: list[str], reason: str) -> None:
        self.batch_number = batch_number
        self.symbols = symbols
        self.reason = reason
        super().__init__(f"Ingestion batch {batch_number} ({len(symbols)} symbols) failed: {reason}")


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    code = "MarketDataError"

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a market data provider is unreachable.

    This is a retryable error for a single fetch. Raised by an ingestion run
    only when the provider is unreachable before any symbol is fetched.
    """

    code = "ProviderUnavailable"

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when the provider does not know a ticker.

    This is NOT a retryable error.
    """

    code = "TickerNotFound"

    def __init__(self, ticker: str, exchange: str, provider: str) -> None:
        message = f"Ticker '{ticker}' on exchange '{exchange}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.ticker = ticker
        self.exchange = exchange


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    code = "RateLimited"

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class FetchTimeoutError(MarketDataError):
    """Raised when a single quote fetch exceeds its timeout."""

    code = "FetchTimeout"

    def __init__(self, provider: str, ticker: str, timeout: float) -> None:
        super().__init__(
            f"Fetching '{ticker}' from '{provider}' timed out after {timeout}s",
            provider=provider,
        )
        self.ticker = ticker
        self.timeout = timeout


# Re-export CircuitBreakerOpen for easier importing alongside other exceptions
from modelfolio.services.circuit_breaker import CircuitBreakerOpen  # noqa: E402

__all__ = [
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "PortfolioNotFoundError",
    "HoldingNotFoundError",
    "SymbolNotFoundError",
    "TransactionError",
    "InsufficientCashError",
    "InvalidQuantityError",
    "AlreadyClosedError",
    "ConcurrentModificationError",
    "PriceUnavailableError",
    "ValuationError",
    "IngestionBatchFailure",
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    "FetchTimeoutError",
    "CircuitBreakerOpen",
]
