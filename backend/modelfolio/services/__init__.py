# backend/modelfolio/services/__init__.py
"""
Service layer for business logic.

Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions (see exceptions.py)
- Receive database sessions as parameters (not via Depends)
- Are easily testable via dependency injection

Architecture:
    services/
    ├── exceptions.py       # Domain exceptions with machine-readable codes
    ├── constants.py        # Rounding quanta, exchange suffixes, history periods
    ├── protocols.py        # Notifier / audit sink interfaces
    ├── circuit_breaker.py  # Async circuit breaker for the price provider
    ├── audit.py            # Calculation audit sinks
    ├── notifications.py    # Email / logging notifiers
    ├── transactions/       # Buy / sell state machine and atomic service
    ├── valuation/          # Holding calculators, engine, price log history
    └── market_data/        # Quote providers, ingestion, scheduler

Import from the subpackages directly, e.g.:
    from modelfolio.services.transactions import TransactionService
    from modelfolio.services.valuation import PortfolioValuationEngine
"""
