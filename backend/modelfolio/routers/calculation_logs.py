# backend/modelfolio/routers/calculation_logs.py
"""
Calculation log endpoint: the step trace written by the valuation engine.

- GET /calculation-logs?level=&step=&portfolio_id=&run_id=&limit=
"""

from fastapi import APIRouter, Depends, Query

from modelfolio.dependencies import get_audit_sink
from modelfolio.schemas.calculation_logs import CalculationLogListResponse, CalculationLogResponse
from modelfolio.services.protocols import AuditFilter, CalculationAuditSink
from modelfolio.services.valuation.trace import CalculationStep

router = APIRouter(
    prefix="/calculation-logs",
    tags=["Calculation Logs"],
)


@router.get("", response_model=CalculationLogListResponse)
def list_calculation_logs(
        level: str | None = Query(None, pattern="^(INFO|WARNING|ERROR|info|warning|error)$"),
        step: CalculationStep | None = Query(None),
        portfolio_id: int | None = Query(None),
        run_id: str | None = Query(None),
        limit: int = Query(100, ge=1, le=1000),
        sink: CalculationAuditSink = Depends(get_audit_sink),
) -> CalculationLogListResponse:
    """Newest entries first."""
    entries = sink.read(AuditFilter(
        level=level,
        step=step.value if step else None,
        portfolio_id=portfolio_id,
        run_id=run_id,
        limit=limit,
    ))
    return CalculationLogListResponse(
        count=len(entries),
        entries=[
            CalculationLogResponse(
                run_id=e.run_id,
                portfolio_id=e.portfolio_id,
                portfolio_name=e.portfolio_name,
                step=e.step.value,
                level=e.level,
                message=e.message,
                data=e.data,
                created_at=e.created_at,
            )
            for e in entries
        ],
    )
