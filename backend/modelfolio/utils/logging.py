# backend/modelfolio/utils/logging.py
"""
Logging configuration for Modelfolio.

Provides centralized logging setup with:
- Environment-based log levels (LOG_LEVEL)
- Text or JSON output (LOG_FORMAT)
- Correlation ID on every record (request, ingestion run or valuation batch)
- Suppression of noisy third-party library logs

Usage:
    from modelfolio.utils import setup_logging

    setup_logging()

Log Levels:
    DEBUG   - Per-symbol fetch attempts, per-step valuation data
    INFO    - Run summaries, applied transactions
    WARNING - Data-quality issues, retries, minimum-investment shortfalls
    ERROR   - Failed batches, critical valuation errors, alert failures
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from modelfolio.config import settings
from modelfolio.utils.context import get_correlation_id

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "-"

NOISY_LOGGERS = [
    "yfinance",
    "urllib3",
    "requests",
    "peewee",
    "httpx",
    "asyncio",
    "sqlalchemy.engine",
]

# Attributes every LogRecord has; anything else came in through `extra=`
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"correlation_id", "message", "taskName"}


# =============================================================================
# FILTER / FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """Adds ``correlation_id`` to every record passing through the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, for log aggregation.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.123456+00:00",
        "level": "INFO",
        "logger": "modelfolio.services.market_data.ingestion",
        "correlation_id": "ingest-closing-3f2a9c1b7d4e",
        "message": "Ingestion run finished: 49/50 updated",
        "extra": { ... }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)

        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry)


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure the root logger. Call once at process startup.

    Args:
        level: Log level name, defaults to settings.log_level
        log_format: 'text' or 'json', defaults to settings.log_format

    Raises:
        ValueError: If the level name is not a valid log level
    """
    level_name = (level or settings.log_level).upper().strip()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        raise ValueError(f"Invalid log level: '{level_name}'")

    format_type = (log_format or settings.log_format).lower()
    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=DEFAULT_TEXT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level_name}, format={format_type}")
