# tests/test_correlation_id.py
"""
Tests for correlation ID middleware, context management and log records.
"""

import json
import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from modelfolio.database import get_db
from modelfolio.dependencies import get_scheduler
from modelfolio.main import app
from modelfolio.services.market_data import PriceIngestionService, QuoteFetcher
from modelfolio.services.market_data.scheduler import PriceIngestionScheduler
from modelfolio.utils.context import (
    correlation_scope,
    get_correlation_id,
    new_correlation_id,
    set_correlation_id,
)
from modelfolio.utils.logging import CorrelationIdFilter, JsonFormatter, setup_logging


def make_record(message: str = "Ingestion run finished") -> logging.LogRecord:
    return logging.LogRecord("modelfolio.test", logging.INFO, __file__, 1, message, None, None)


class TestCorrelationIdContext:
    """Tests for correlation ID context functions."""

    def test_get_returns_none_outside_scope(self):
        """Should return None when no scope is active."""
        assert get_correlation_id() is None

    def test_scope_generates_prefixed_id(self):
        """A prefix becomes part of the generated ID."""
        with correlation_scope("ingest-closing") as cid:
            assert cid.startswith("ingest-closing-")
            assert get_correlation_id() == cid
        assert get_correlation_id() is None

    def test_nested_scopes_restore_outer_id(self):
        """Leaving an inner scope restores the outer ID."""
        with correlation_scope(correlation_id="snapshot-1"):
            with correlation_scope("valuation"):
                assert get_correlation_id().startswith("valuation-")
            assert get_correlation_id() == "snapshot-1"

    def test_set_correlation_id(self):
        """set_correlation_id is visible inside the current context."""
        with correlation_scope(correlation_id="outer"):
            set_correlation_id("replaced")
            assert get_correlation_id() == "replaced"

    def test_new_correlation_id_without_prefix(self):
        """Without a prefix a full UUID4 string is returned."""
        cid = new_correlation_id()

        assert len(cid) == 36
        assert cid.count("-") == 4


class TestLogRecords:
    """CorrelationIdFilter and JsonFormatter."""

    def test_filter_adds_correlation_id(self):
        """Records get the active ID, or a placeholder outside any scope."""
        outside = make_record()
        CorrelationIdFilter().filter(outside)

        with correlation_scope(correlation_id="run-42"):
            inside = make_record()
            CorrelationIdFilter().filter(inside)

        assert inside.correlation_id == "run-42"
        assert outside.correlation_id != "run-42"

    def test_json_formatter(self):
        """One JSON object with level, logger, message and correlation ID."""
        record = make_record("49/50 updated")
        record.updated_count = 49
        with correlation_scope(correlation_id="ingest-regular-abc"):
            CorrelationIdFilter().filter(record)

        entry = json.loads(JsonFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "modelfolio.test"
        assert entry["message"] == "49/50 updated"
        assert entry["correlation_id"] == "ingest-regular-abc"
        assert entry["extra"]["updated_count"] == 49

    def test_invalid_level_rejected(self):
        """Unknown level names raise ValueError."""
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logging(level="LOUD")


class TestCorrelationIdMiddleware:
    """Tests for correlation ID middleware."""

    @pytest.fixture
    def client(self, db: Session, fake_provider, session_factory):
        """Create test client with database and scheduler overrides."""
        def override_get_db():
            try:
                yield db
            finally:
                pass

        scheduler = PriceIngestionScheduler(
            PriceIngestionService(QuoteFetcher(fake_provider), session_factory=session_factory)
        )
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_scheduler] = lambda: scheduler

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()

    def test_generates_correlation_id_when_not_provided(self, client):
        """Should generate a UUID correlation ID when not provided in request."""
        response = client.get("/health")

        assert response.status_code == 200
        correlation_id = response.headers["X-Correlation-ID"]
        assert len(correlation_id) == 36
        assert correlation_id.count("-") == 4

    def test_uses_provided_correlation_id(self, client):
        """Should use correlation ID from request header."""
        response = client.get("/health", headers={"X-Correlation-ID": "my-custom-trace-id-123"})

        assert response.headers["X-Correlation-ID"] == "my-custom-trace-id-123"

    def test_uses_request_id_header_as_fallback(self, client):
        """Should use X-Request-ID header if X-Correlation-ID not provided."""
        response = client.get("/health", headers={"X-Request-ID": "my-request-id-456"})

        assert response.headers["X-Correlation-ID"] == "my-request-id-456"

    def test_prefers_correlation_id_over_request_id(self, client):
        """Should prefer X-Correlation-ID over X-Request-ID."""
        response = client.get(
            "/health",
            headers={"X-Correlation-ID": "correlation-123", "X-Request-ID": "request-456"},
        )

        assert response.headers["X-Correlation-ID"] == "correlation-123"

    def test_error_responses_carry_id(self, client):
        """Handled errors still get the header."""
        response = client.post("/portfolios/1/transactions/buy", json={"symbol": "TCS"})

        assert response.status_code == 422
        assert "X-Correlation-ID" in response.headers

    def test_different_requests_get_different_ids(self, client):
        """Different requests should get different correlation IDs."""
        id1 = client.get("/health").headers["X-Correlation-ID"]
        id2 = client.get("/health").headers["X-Correlation-ID"]

        assert id1 != id2
