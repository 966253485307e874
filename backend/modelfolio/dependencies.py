# backend/modelfolio/dependencies.py
"""
Dependency injection module for FastAPI services.

This module provides singleton service instances that are shared across
all requests. The quote provider, its fetcher and circuit breaker are
created once and owned by the ingestion service and scheduler; nothing
else holds a price client.

Services are lazily initialized on first use to avoid import-time side effects.

Usage in routers:
    from modelfolio.dependencies import get_transaction_service

    @router.post("/{portfolio_id}/transactions/buy")
    def buy(service: TransactionService = Depends(get_transaction_service)):
        ...
"""

import logging
from functools import lru_cache

from modelfolio.config import settings
from modelfolio.database import SessionLocal
from modelfolio.services.audit import DatabaseAuditSink
from modelfolio.services.market_data.fetcher import QuoteFetcher
from modelfolio.services.market_data.ingestion import PriceIngestionService
from modelfolio.services.market_data.scheduler import PriceIngestionScheduler
from modelfolio.services.market_data.yahoo import YahooQuoteProvider
from modelfolio.services.notifications import EmailNotifier, LoggingNotifier, build_notifier
from modelfolio.services.transactions.service import TransactionService
from modelfolio.services.valuation.engine import PortfolioValuationEngine
from modelfolio.services.valuation.history import PriceLogService
from modelfolio.services.valuation.types import BatchValuationResult

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETON SERVICE INSTANCES
# =============================================================================
# Order matters: define dependencies before dependents
# 1. get_quote_provider, get_audit_sink, get_notifier (no deps)
# 2. get_valuation_engine (depends on audit sink)
# 3. get_ingestion_service (depends on provider, notifier)
# 4. get_scheduler (depends on ingestion service, valuation engine)


@lru_cache(maxsize=1)
def get_quote_provider() -> YahooQuoteProvider:
    return YahooQuoteProvider()


@lru_cache(maxsize=1)
def get_audit_sink() -> DatabaseAuditSink:
    return DatabaseAuditSink(SessionLocal, retention_days=settings.audit_retention_days)


@lru_cache(maxsize=1)
def get_notifier() -> EmailNotifier | LoggingNotifier:
    return build_notifier()


@lru_cache(maxsize=1)
def get_valuation_engine() -> PortfolioValuationEngine:
    return PortfolioValuationEngine(audit_sink=get_audit_sink())


@lru_cache(maxsize=1)
def get_transaction_service() -> TransactionService:
    return TransactionService()


@lru_cache(maxsize=1)
def get_price_log_service() -> PriceLogService:
    return PriceLogService()


@lru_cache(maxsize=1)
def get_ingestion_service() -> PriceIngestionService:
    """
    Get the singleton ingestion service.

    The fetcher wraps the shared provider with the configured timeout,
    retry policy and circuit breaker.
    """
    fetcher = QuoteFetcher(get_quote_provider())
    return PriceIngestionService(fetcher, session_factory=SessionLocal, notifier=get_notifier())


def run_daily_snapshot() -> BatchValuationResult:
    """
    Closing-price valuation and price log of every portfolio.

    Blocking; the scheduler runs it in a worker thread. Expired calculation
    log entries are purged afterwards.
    """
    with SessionLocal() as db:
        batch = get_price_log_service().record_all(db, get_valuation_engine())
    purged = get_audit_sink().purge_expired()
    logger.info(f"Daily snapshot done, {purged} expired calculation log entries purged")
    return batch


@lru_cache(maxsize=1)
def get_scheduler() -> PriceIngestionScheduler:
    return PriceIngestionScheduler(get_ingestion_service(), snapshot=run_daily_snapshot)
