# backend/modelfolio/utils/__init__.py
from modelfolio.utils.context import correlation_scope, get_correlation_id, new_correlation_id
from modelfolio.utils.logging import setup_logging

__all__ = [
    "correlation_scope",
    "get_correlation_id",
    "new_correlation_id",
    "setup_logging",
]
