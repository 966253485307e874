# backend/modelfolio/schemas/calculation_logs.py
"""
Pydantic schemas for the valuation calculation trace.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CalculationLogResponse(BaseModel):
    run_id: str
    portfolio_id: int | None
    portfolio_name: str | None
    step: str
    level: str
    message: str
    data: dict[str, Any]
    created_at: datetime


class CalculationLogListResponse(BaseModel):
    count: int
    entries: list[CalculationLogResponse]
