# backend/modelfolio/services/valuation/__init__.py
"""
Valuation package.

Architecture:
    valuation/
    ├── __init__.py      # This file - package exports
    ├── types.py         # Internal data classes
    ├── calculators.py   # Holding-level pure calculators and price policy
    ├── trace.py         # Step trace of one valuation
    ├── engine.py        # PortfolioValuationEngine (orchestrator)
    └── history.py       # Daily PriceLog snapshots and history

Data Flow:
    StockSymbol → EffectivePriceResolver → EffectivePrice
    Holding + EffectivePrice → HoldingValuator → HoldingValuationResult
    Results + cash → PortfolioValuationEngine → PortfolioValuation → PriceLog
"""

from modelfolio.services.valuation.calculators import (
    CostCalculator,
    EffectivePriceResolver,
    HoldingValuator,
    MarketValueCalculator,
    UnrealizedPnLCalculator,
)
from modelfolio.services.valuation.engine import PortfolioValuationEngine
from modelfolio.services.valuation.history import HistoryPoint, PortfolioHistory, PriceLogService
from modelfolio.services.valuation.trace import CalculationStep, CalculationTrace, TraceEntry
from modelfolio.services.valuation.types import (
    BatchValuationResult,
    EffectivePrice,
    HoldingValuationResult,
    MinimumInvestmentCheck,
    PortfolioValuation,
    PriceSource,
)

__all__ = [
    "CostCalculator",
    "EffectivePriceResolver",
    "HoldingValuator",
    "MarketValueCalculator",
    "UnrealizedPnLCalculator",
    "PortfolioValuationEngine",
    "HistoryPoint",
    "PortfolioHistory",
    "PriceLogService",
    "CalculationStep",
    "CalculationTrace",
    "TraceEntry",
    "BatchValuationResult",
    "EffectivePrice",
    "HoldingValuationResult",
    "MinimumInvestmentCheck",
    "PortfolioValuation",
    "PriceSource",
]
