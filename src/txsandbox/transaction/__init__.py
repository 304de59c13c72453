"""
Transactions and savepoints, and the manager that scopes them to the
boundaries of a test run.
"""

from .base import Transaction
from .interfaces import (
    TRANSACTION_KEY,
    IsolationLevel,
    TransactionError,
    TransactionState,
)
from .manager import TransactionManager, get_last_unresolved
from .savepoint import Savepoint

__all__ = [
    "TRANSACTION_KEY",
    "IsolationLevel",
    "Savepoint",
    "Transaction",
    "TransactionError",
    "TransactionManager",
    "TransactionState",
    "get_last_unresolved",
]
