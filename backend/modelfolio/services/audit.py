# backend/modelfolio/services/audit.py
"""
Calculation audit log sinks.

The valuation engine hands every trace entry to a sink. Sinks are pure
observers: a failing sink is logged by the engine and never changes a
valuation result.

Implementations:
    DatabaseAuditSink  - persists to calculation_log_entries, purges old rows
    InMemoryAuditSink  - bounded in-process buffer (tests, local runs)
"""

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from modelfolio.models import CalculationLogEntry
from modelfolio.services.protocols import AuditFilter
from modelfolio.services.valuation.calculators import as_utc
from modelfolio.services.valuation.trace import CalculationStep, TraceEntry

logger = logging.getLogger(__name__)


def _matches(entry: TraceEntry, audit_filter: AuditFilter) -> bool:
    if audit_filter.level and entry.level != audit_filter.level.upper():
        return False
    if audit_filter.step and entry.step.value != audit_filter.step:
        return False
    if audit_filter.portfolio_id is not None and entry.portfolio_id != audit_filter.portfolio_id:
        return False
    if audit_filter.run_id and entry.run_id != audit_filter.run_id:
        return False
    if audit_filter.since and as_utc(entry.created_at) < as_utc(audit_filter.since):
        return False
    return True


class InMemoryAuditSink:
    """Keeps the most recent ``max_entries`` trace entries in memory."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self._entries: deque[TraceEntry] = deque(maxlen=max_entries)

    def append(self, entry: TraceEntry) -> None:
        self._entries.append(entry)

    def read(self, audit_filter: AuditFilter) -> list[TraceEntry]:
        matching = [e for e in reversed(self._entries) if _matches(e, audit_filter)]
        return matching[:audit_filter.limit]

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseAuditSink:
    """
    Persists trace entries to the calculation_log_entries table.

    Uses its own short-lived sessions, so writing an audit entry never
    commits or rolls back the caller's unit of work.

    Args:
        session_factory: Callable returning a new Session (e.g. SessionLocal)
        retention_days: Entries older than this are removed by purge_expired()
    """

    def __init__(self, session_factory: Callable[[], Session], retention_days: int = 2) -> None:
        self._session_factory = session_factory
        self.retention = timedelta(days=retention_days)

    def append(self, entry: TraceEntry) -> None:
        with self._session_factory() as db:
            db.add(CalculationLogEntry(
                run_id=entry.run_id,
                portfolio_id=entry.portfolio_id,
                portfolio_name=entry.portfolio_name,
                step=entry.step.value,
                level=entry.level,
                message=entry.message,
                data=entry.data,
                created_at=entry.created_at,
            ))
            db.commit()

    def read(self, audit_filter: AuditFilter) -> list[TraceEntry]:
        stmt = select(CalculationLogEntry)
        if audit_filter.level:
            stmt = stmt.where(CalculationLogEntry.level == audit_filter.level.upper())
        if audit_filter.step:
            stmt = stmt.where(CalculationLogEntry.step == audit_filter.step)
        if audit_filter.portfolio_id is not None:
            stmt = stmt.where(CalculationLogEntry.portfolio_id == audit_filter.portfolio_id)
        if audit_filter.run_id:
            stmt = stmt.where(CalculationLogEntry.run_id == audit_filter.run_id)
        if audit_filter.since:
            stmt = stmt.where(CalculationLogEntry.created_at >= audit_filter.since)
        stmt = stmt.order_by(CalculationLogEntry.created_at.desc(), CalculationLogEntry.id.desc())
        stmt = stmt.limit(audit_filter.limit)

        with self._session_factory() as db:
            rows = db.scalars(stmt).all()
            return [self._to_entry(row) for row in rows]

    def purge_expired(self, now: datetime | None = None) -> int:
        """
        Delete entries older than the retention window.

        Returns:
            Number of deleted entries
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        with self._session_factory() as db:
            result = db.execute(
                delete(CalculationLogEntry).where(CalculationLogEntry.created_at < cutoff)
            )
            db.commit()
            deleted = result.rowcount or 0

        if deleted:
            logger.info(f"Purged {deleted} calculation log entries older than {cutoff.isoformat()}")
        return deleted

    @staticmethod
    def _to_entry(row: CalculationLogEntry) -> TraceEntry:
        return TraceEntry(
            run_id=row.run_id,
            portfolio_id=row.portfolio_id,
            portfolio_name=row.portfolio_name,
            step=CalculationStep(row.step),
            level=row.level,
            message=row.message,
            data=row.data or {},
            created_at=as_utc(row.created_at),
        )
