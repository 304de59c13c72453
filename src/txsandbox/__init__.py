from importlib.metadata import version

from .base.interface import BaseInterface
from .context import Namespace, create_namespace, get_namespace
from .events import EventNotifier, TransactionEvent
from .exception import (
    ConfigurationError,
    InvariantViolationError,
    NoContextError,
    SandboxError,
    TransactionalWarning,
)
from .instrument import Boundary, instrument, suite_failed, walk_suite
from .sandbox import Sandbox
from .sql.mysql.interface import MysqlPool
from .sql.postgres.interface import PostgresPool
from .sql.sqlite.interface import SQLitePool
from .suite import Case, CaseState, HookList, RunReport, Suite, SuiteRunner
from .transaction import (
    IsolationLevel,
    Savepoint,
    Transaction,
    TransactionError,
    TransactionManager,
)

__version__ = version("txsandbox")

__all__ = (
    "BaseInterface",
    "Boundary",
    "Case",
    "CaseState",
    "ConfigurationError",
    "EventNotifier",
    "HookList",
    "InvariantViolationError",
    "IsolationLevel",
    "MysqlPool",
    "Namespace",
    "NoContextError",
    "PostgresPool",
    "RunReport",
    "SQLitePool",
    "Sandbox",
    "SandboxError",
    "Savepoint",
    "Suite",
    "SuiteRunner",
    "Transaction",
    "TransactionError",
    "TransactionEvent",
    "TransactionManager",
    "TransactionalWarning",
    "create_namespace",
    "get_namespace",
    "instrument",
    "suite_failed",
    "walk_suite",
)
