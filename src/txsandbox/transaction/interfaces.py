from enum import Enum

from txsandbox.exception import SandboxError

TRANSACTION_KEY = "transaction"


class IsolationLevel(Enum):
    """SQL transaction isolation levels"""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class TransactionState(Enum):
    """Transaction state machine states"""

    PENDING = "pending"  # Created but not started
    ACTIVE = "active"  # Transaction has begun
    COMMITTED = "committed"  # Transaction committed successfully
    ROLLED_BACK = "rolled_back"  # Transaction was rolled back


class TransactionError(SandboxError):
    """Base exception for transaction errors"""

    pass
