# tests/services/test_audit.py
"""
Tests for the calculation audit sinks.
"""

from datetime import datetime, timedelta, timezone

import pytest

from modelfolio.services.audit import DatabaseAuditSink, InMemoryAuditSink
from modelfolio.services.protocols import AuditFilter
from modelfolio.services.valuation.trace import CalculationStep, TraceEntry

NOW = datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)


def make_entry(
        step: CalculationStep = CalculationStep.SUMMARY,
        level: str = "INFO",
        portfolio_id: int | None = 1,
        run_id: str = "valuation-abc",
        created_at: datetime = NOW,
) -> TraceEntry:
    return TraceEntry(
        run_id=run_id,
        portfolio_id=portfolio_id,
        portfolio_name="Growth",
        step=step,
        level=level,
        message=f"{step.value} message",
        data={"total": "100.00"},
        created_at=created_at,
    )


@pytest.fixture
def db_sink(session_factory) -> DatabaseAuditSink:
    return DatabaseAuditSink(session_factory, retention_days=2)


class TestDatabaseAuditSink:
    """Persisted audit entries."""

    def test_round_trip(self, db_sink):
        """An appended entry reads back with its step, data and UTC timestamp."""
        db_sink.append(make_entry())

        [entry] = db_sink.read(AuditFilter())

        assert entry.step == CalculationStep.SUMMARY
        assert entry.data == {"total": "100.00"}
        assert entry.created_at == NOW

    def test_filters(self, db_sink):
        """Level, step, portfolio and run filters combine."""
        db_sink.append(make_entry(CalculationStep.PRICE_FETCH, level="WARNING", portfolio_id=1))
        db_sink.append(make_entry(CalculationStep.CRITICAL_ERROR, level="ERROR", portfolio_id=2, run_id="r2"))
        db_sink.append(make_entry(CalculationStep.COMPLETION, portfolio_id=1))

        assert len(db_sink.read(AuditFilter(level="warning"))) == 1
        assert [e.portfolio_id for e in db_sink.read(AuditFilter(step="CRITICAL_ERROR"))] == [2]
        assert len(db_sink.read(AuditFilter(portfolio_id=1))) == 2
        assert len(db_sink.read(AuditFilter(run_id="r2"))) == 1

    def test_newest_first_with_limit(self, db_sink):
        """Results are newest first and capped by limit."""
        for minutes in range(5):
            db_sink.append(make_entry(created_at=NOW + timedelta(minutes=minutes)))

        entries = db_sink.read(AuditFilter(limit=2))

        assert [e.created_at for e in entries] == [NOW + timedelta(minutes=4), NOW + timedelta(minutes=3)]

    def test_purge_expired(self, db_sink):
        """Entries older than the retention window are deleted."""
        db_sink.append(make_entry(created_at=NOW - timedelta(days=3)))
        db_sink.append(make_entry(created_at=NOW - timedelta(hours=1)))

        deleted = db_sink.purge_expired(now=NOW)

        assert deleted == 1
        assert [e.created_at for e in db_sink.read(AuditFilter())] == [NOW - timedelta(hours=1)]


class TestInMemoryAuditSink:
    """Bounded in-process sink."""

    def test_bounded(self):
        """Only the most recent entries are kept."""
        sink = InMemoryAuditSink(max_entries=3)
        for i in range(5):
            sink.append(make_entry(run_id=f"run-{i}"))

        assert len(sink) == 3
        assert [e.run_id for e in sink.read(AuditFilter())] == ["run-4", "run-3", "run-2"]

    def test_since_filter(self):
        """Entries older than ``since`` are excluded."""
        sink = InMemoryAuditSink()
        sink.append(make_entry(created_at=NOW - timedelta(hours=2)))
        sink.append(make_entry(created_at=NOW))

        entries = sink.read(AuditFilter(since=NOW - timedelta(hours=1)))

        assert [e.created_at for e in entries] == [NOW]
