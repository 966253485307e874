# backend/modelfolio/services/transactions/__init__.py
"""
Transaction application package.

Architecture:
    transactions/
    ├── types.py       # HoldingState, TransactionOutcome
    ├── processor.py   # TransactionProcessor (in-memory state machine)
    └── service.py     # TransactionService (atomic commit, optimistic retry)
"""

from modelfolio.services.transactions.processor import TransactionProcessor
from modelfolio.services.transactions.service import TransactionService
from modelfolio.services.transactions.types import HoldingState, TransactionOutcome

__all__ = [
    "TransactionProcessor",
    "TransactionService",
    "HoldingState",
    "TransactionOutcome",
]
