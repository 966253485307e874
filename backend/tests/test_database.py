# tests/test_database.py
"""
Tests for the database connectivity check.
"""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from modelfolio.database import check_database_health


class TestCheckDatabaseHealth:
    """check_database_health()"""

    def test_healthy_session(self, db):
        """A working session reports healthy and names the backend."""
        result = check_database_health(db)

        assert result["status"] == "healthy"
        assert result["database"] in ("sqlite", "postgresql")

    def test_failing_session(self):
        """A database error is reported, not raised."""
        broken = MagicMock(spec=Session)
        broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

        result = check_database_health(broken)

        assert result["status"] == "unhealthy"
        assert "connection refused" in result["error"]
