# backend/modelfolio/utils/context.py
"""
Correlation ID context for log tracing.

Requests, ingestion runs and valuation batches each get a correlation ID.
It is stored in a ContextVar, so it propagates through async/await calls
and into tasks created while it is set, and every log line of one run can
be found by filtering on it.

Usage:
    from modelfolio.utils.context import correlation_scope

    with correlation_scope("ingest-closing"):
        ...  # log lines here carry the generated ID
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Return the current correlation ID, or None outside any scope."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def new_correlation_id(prefix: str | None = None) -> str:
    """
    Generate a correlation ID.

    Args:
        prefix: Optional readable prefix, e.g. "ingest-regular"

    Returns:
        "<prefix>-<12 hex chars>" or a bare UUID4 string without prefix
    """
    if prefix:
        return f"{prefix}-{uuid.uuid4().hex[:12]}"
    return str(uuid.uuid4())


@contextmanager
def correlation_scope(prefix: str | None = None, correlation_id: str | None = None) -> Iterator[str]:
    """
    Set a correlation ID for the duration of the block.

    The previous ID is restored on exit, so nested scopes (a valuation batch
    started from the daily snapshot job) behave as expected.
    """
    cid = correlation_id or new_correlation_id(prefix)
    token = _correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        _correlation_id_var.reset(token)
