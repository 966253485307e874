# backend/modelfolio/schemas/prices.py
"""
Pydantic schemas for price ingestion endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from modelfolio.services.market_data.ingestion import UpdateType


class IngestRequest(BaseModel):
    update_type: UpdateType = Field(
        default=UpdateType.MANUAL,
        description="regular, closing or manual; closing also sets the closing price"
    )


class SymbolFailureResponse(BaseModel):
    ticker: str
    exchange: str
    reason: str
    attempts: int


class IngestionRunResponse(BaseModel):
    """Summary of an ingestion run."""

    run_id: str
    update_type: UpdateType
    started_at: datetime
    finished_at: datetime | None
    duration_seconds: float
    total: int
    updated_count: int
    changed_count: int
    failed_count: int
    failure_rate: float
    failures: list[SymbolFailureResponse]
    alert_sent: bool
    message: str


class ScheduledJobResponse(BaseModel):
    name: str
    at: str = Field(..., description="UTC time of day, HH:MM")
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_status: str | None = None
    last_message: str | None = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    busy: bool = Field(..., description="True while an ingestion or snapshot run holds the lock")
    jobs: list[ScheduledJobResponse]
