# backend/modelfolio/services/valuation/trace.py
"""
Step-by-step calculation trace of a portfolio valuation.

Every valuation records what each step consumed and produced. The trace is
handed to a CalculationAuditSink for later debugging; it never feeds back
into the valuation itself.

Steps, in order:
    STEP_1_PRICE_FETCH     effective price per symbol
    STEP_2_HOLDINGS_VALUE  per-holding market value and unrealized P&L
    STEP_3_MIN_INVESTMENT  effective minimum investment and shortfall check
    STEP_4_CASH_BALANCE    cash as stored
    STEP_5_TOTAL_VALUE     cash + holdings market value
    STEP_6_SUMMARY         final figures and warnings
    COMPLETION             valuation finished
    CRITICAL_ERROR         valuation of this portfolio aborted
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class CalculationStep(str, Enum):
    PRICE_FETCH = "STEP_1_PRICE_FETCH"
    HOLDINGS_VALUE = "STEP_2_HOLDINGS_VALUE"
    MIN_INVESTMENT = "STEP_3_MIN_INVESTMENT"
    CASH_BALANCE = "STEP_4_CASH_BALANCE"
    TOTAL_VALUE = "STEP_5_TOTAL_VALUE"
    SUMMARY = "STEP_6_SUMMARY"
    COMPLETION = "COMPLETION"
    CRITICAL_ERROR = "CRITICAL_ERROR"


def to_jsonable(value: Any) -> Any:
    """Convert Decimals, datetimes and enums so trace data can be stored as JSON."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class TraceEntry:
    """
    One recorded step.

    Attributes:
        run_id: Correlation ID shared by every entry of one valuation run
        portfolio_id: Portfolio being valued
        portfolio_name: Portfolio name (kept for readability of old entries)
        step: Step tag
        level: INFO, WARNING or ERROR
        message: Short human-readable description
        data: JSON-safe step inputs/outputs
        created_at: When the step was recorded
    """

    run_id: str
    portfolio_id: int | None
    portfolio_name: str | None
    step: CalculationStep
    level: str
    message: str
    data: dict[str, Any]
    created_at: datetime


@dataclass
class CalculationTrace:
    """Collects the trace entries of one portfolio valuation."""

    run_id: str
    portfolio_id: int | None = None
    portfolio_name: str | None = None
    entries: list[TraceEntry] = field(default_factory=list)

    def record(
            self,
            step: CalculationStep,
            message: str,
            data: dict[str, Any] | None = None,
            level: str = "INFO",
    ) -> TraceEntry:
        entry = TraceEntry(
            run_id=self.run_id,
            portfolio_id=self.portfolio_id,
            portfolio_name=self.portfolio_name,
            step=step,
            level=level,
            message=message,
            data=to_jsonable(data or {}),
            created_at=datetime.now(timezone.utc),
        )
        self.entries.append(entry)
        return entry

    @property
    def steps(self) -> list[CalculationStep]:
        return [e.step for e in self.entries]

    @property
    def failed(self) -> bool:
        return any(e.step == CalculationStep.CRITICAL_ERROR for e in self.entries)
