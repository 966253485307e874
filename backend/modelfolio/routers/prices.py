# backend/modelfolio/routers/prices.py
"""
Price ingestion endpoints.

- POST /prices/ingest     - Run an ingestion now (waits for a run in progress)
- GET  /prices/scheduler  - Scheduler state and job timings
"""

import logging

from fastapi import APIRouter, Depends, Request

from modelfolio.dependencies import get_scheduler
from modelfolio.middleware.rate_limit import RATE_LIMIT_INGEST, limiter
from modelfolio.schemas.prices import (
    IngestionRunResponse,
    IngestRequest,
    ScheduledJobResponse,
    SchedulerStatusResponse,
    SymbolFailureResponse,
)
from modelfolio.services.market_data.ingestion import IngestionRunSummary
from modelfolio.services.market_data.scheduler import PriceIngestionScheduler

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/prices",
    tags=["Prices"],
)


def _map_summary(summary: IngestionRunSummary) -> IngestionRunResponse:
    return IngestionRunResponse(
        run_id=summary.run_id,
        update_type=summary.update_type,
        started_at=summary.started_at,
        finished_at=summary.finished_at,
        duration_seconds=summary.duration_seconds,
        total=summary.total,
        updated_count=summary.updated_count,
        changed_count=summary.changed_count,
        failed_count=summary.failed_count,
        failure_rate=summary.failure_rate,
        failures=[
            SymbolFailureResponse(ticker=f.ticker, exchange=f.exchange, reason=f.reason, attempts=f.attempts)
            for f in summary.failures
        ],
        alert_sent=summary.alert_sent,
        message=summary.message,
    )


@router.post("/ingest", response_model=IngestionRunResponse)
@limiter.limit(RATE_LIMIT_INGEST)
async def trigger_ingestion(
        request: Request,
        payload: IngestRequest | None = None,
        scheduler: PriceIngestionScheduler = Depends(get_scheduler),
) -> IngestionRunResponse:
    """
    Run a price ingestion on demand.

    Per-symbol failures are reported in the response; only an unreachable
    provider turns into an error (503).
    """
    update_type = payload.update_type if payload else IngestRequest().update_type
    logger.info(f"On-demand {update_type.value} ingestion requested")
    summary = await scheduler.trigger(update_type)
    return _map_summary(summary)


@router.get("/scheduler", response_model=SchedulerStatusResponse)
def get_scheduler_status(
        scheduler: PriceIngestionScheduler = Depends(get_scheduler),
) -> SchedulerStatusResponse:
    status = scheduler.status()
    return SchedulerStatusResponse(
        running=status["running"],
        busy=status["busy"],
        jobs=[ScheduledJobResponse(**job) for job in status["jobs"]],
    )
