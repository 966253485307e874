# backend/modelfolio/services/constants.py
"""
Centralized constants for the Modelfolio services.

Tunable policy values (batch sizes, delays, tolerances) live in settings;
this module holds the fixed business rules.

Usage:
    from modelfolio.services.constants import MONEY_QUANT, PRICE_QUANT
"""

from decimal import Decimal


# =============================================================================
# DECIMAL PRECISION
# =============================================================================

# Cash, market values and P&L amounts are kept to the paisa
MONEY_QUANT: Decimal = Decimal("0.01")

# Blended buy prices keep four decimals so repeated averaging does not drift
PRICE_QUANT: Decimal = Decimal("0.0001")

# Percentages (unrealized P&L %, gain %) are reported with two decimals
PERCENT_QUANT: Decimal = Decimal("0.01")

ZERO: Decimal = Decimal("0")
HUNDRED: Decimal = Decimal("100")


# =============================================================================
# PRICE INGESTION
# =============================================================================

# Yahoo Finance ticker suffix per exchange
EXCHANGE_SUFFIXES: dict[str, str] = {
    "NSE": ".NS",
    "BSE": ".BO",
}


# =============================================================================
# PRICE HISTORY
# =============================================================================

# Lookback per history period, in days (None = all history)
HISTORY_PERIOD_DAYS: dict[str, int | None] = {
    "1d": 1,
    "1w": 7,
    "1m": 30,
    "3m": 90,
    "6m": 180,
    "1y": 365,
    "all": None,
}


# =============================================================================
# RATE LIMITS (slowapi notation, per client)
# =============================================================================

# Reads: valuations, history, calculation logs
RATE_LIMIT_DEFAULT: str = "100/minute"

# Buys and sells
RATE_LIMIT_WRITE: str = "30/minute"

# On-demand ingestion walks the whole symbol registry against the provider
RATE_LIMIT_INGEST: str = "5/minute"

# Monitoring tools poll frequently
RATE_LIMIT_HEALTH: str = "300/minute"
