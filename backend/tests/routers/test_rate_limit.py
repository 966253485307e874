# tests/routers/test_rate_limit.py
"""
Tests for API rate limiting.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from modelfolio.config import settings
from modelfolio.dependencies import get_scheduler
from modelfolio.main import app
from modelfolio.middleware import rate_limit
from modelfolio.middleware.rate_limit import limiter
from modelfolio.services.market_data import PriceIngestionService, QuoteFetcher
from modelfolio.services.market_data.scheduler import PriceIngestionScheduler


def make_request(client_host: str, headers: dict[str, str] | None = None) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (client_host, 50000),
    })


@pytest.fixture
def limited_client(fake_provider, session_factory):
    """TestClient with rate limiting switched on and a clean counter."""
    scheduler = PriceIngestionScheduler(
        PriceIngestionService(QuoteFetcher(fake_provider), session_factory=session_factory, batch_delay=0)
    )
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    limiter.reset()
    limiter.enabled = True

    with TestClient(app) as c:
        yield c

    limiter.enabled = False
    limiter.reset()
    app.dependency_overrides.clear()


class TestIngestLimit:
    """POST /prices/ingest is limited per client."""

    def test_sixth_ingest_in_a_minute_is_rejected(self, limited_client):
        """Five runs pass; the sixth gets 429 with Retry-After."""
        statuses = [limited_client.post("/prices/ingest").status_code for _ in range(6)]

        assert statuses == [200] * 5 + [429]

    def test_rejection_format(self, limited_client):
        """The 429 body uses the common error format."""
        for _ in range(5):
            limited_client.post("/prices/ingest")

        response = limited_client.post("/prices/ingest")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        data = response.json()
        assert data["error"] == "RateLimitExceeded"
        assert data["details"] == {"retry_after": 60}


class TestClientKey:
    """Which address a request is counted against."""

    def test_direct_client(self):
        """Without a trusted proxy the peer address is used."""
        request = make_request("203.0.113.7", {"X-Forwarded-For": "198.51.100.1"})

        assert rate_limit._client_ip(request) == "203.0.113.7"

    def test_trusted_proxy(self, monkeypatch):
        """Forwarded headers from a trusted proxy name the original client."""
        monkeypatch.setattr(settings, "trusted_proxy_ips", ["10.0.0.2"])
        request = make_request("10.0.0.2", {"X-Forwarded-For": "198.51.100.1, 10.0.0.2"})

        assert rate_limit._client_ip(request) == "198.51.100.1"

    def test_real_ip_header(self, monkeypatch):
        """X-Real-IP is used when X-Forwarded-For is absent."""
        monkeypatch.setattr(settings, "trust_proxy_headers", True)
        request = make_request("10.0.0.2", {"X-Real-IP": "198.51.100.9"})

        assert rate_limit._client_ip(request) == "198.51.100.9"
