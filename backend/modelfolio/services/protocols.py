# backend/modelfolio/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- Existing classes satisfy protocols without modification
- Test fakes work without explicit inheritance
- Clear documentation of required interfaces
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from modelfolio.services.valuation.trace import TraceEntry


class Notifier(Protocol):
    """Interface required by the price ingestion service for alerts."""

    def notify(self, recipient: str | None, subject: str, body: str) -> bool:
        """Deliver the message. Returns False when it could not be delivered."""
        ...


@dataclass(frozen=True)
class AuditFilter:
    """
    Filter for reading calculation audit entries.

    None means "any". Results are newest first, at most ``limit`` entries.
    """

    level: str | None = None
    step: str | None = None
    portfolio_id: int | None = None
    run_id: str | None = None
    since: datetime | None = None
    limit: int = 100


class CalculationAuditSink(Protocol):
    """Interface consumed by the valuation engine for its step trace."""

    def append(self, entry: TraceEntry) -> None:
        ...

    def read(self, audit_filter: AuditFilter) -> list[TraceEntry]:
        ...
