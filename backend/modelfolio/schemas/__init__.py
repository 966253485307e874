# backend/modelfolio/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.

Organized by domain:
- calculation_logs: Valuation calculation trace entries
- errors: Error response formats
- prices: Price ingestion runs and scheduler status
- transactions: Buy / sell requests and results
- valuation: Portfolio valuation and history

Usage:
    from modelfolio.schemas import BuyRequest, TransactionResponse
    from modelfolio.schemas import PortfolioValuationResponse
"""

from modelfolio.schemas.calculation_logs import CalculationLogListResponse, CalculationLogResponse
from modelfolio.schemas.errors import ErrorDetail, ValidationErrorDetail
from modelfolio.schemas.prices import (
    IngestionRunResponse,
    IngestRequest,
    ScheduledJobResponse,
    SchedulerStatusResponse,
    SymbolFailureResponse,
)
from modelfolio.schemas.transactions import BuyRequest, SellRequest, TransactionResponse
from modelfolio.schemas.valuation import (
    HistoryPointResponse,
    HoldingValuationResponse,
    MinimumInvestmentResponse,
    PortfolioHistoryResponse,
    PortfolioValuationResponse,
)

__all__ = [
    "CalculationLogResponse",
    "CalculationLogListResponse",
    "ErrorDetail",
    "ValidationErrorDetail",
    "IngestRequest",
    "IngestionRunResponse",
    "SymbolFailureResponse",
    "ScheduledJobResponse",
    "SchedulerStatusResponse",
    "BuyRequest",
    "SellRequest",
    "TransactionResponse",
    "HoldingValuationResponse",
    "MinimumInvestmentResponse",
    "PortfolioValuationResponse",
    "HistoryPointResponse",
    "PortfolioHistoryResponse",
]
