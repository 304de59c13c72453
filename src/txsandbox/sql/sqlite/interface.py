from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, List, Optional

from txsandbox.base.interface import BaseInterface
from txsandbox.exception import SandboxError
from txsandbox.transaction.interfaces import IsolationLevel

if TYPE_CHECKING:
    from txsandbox.context import Namespace

try:
    import aiosqlite

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False


class SQLitePool(BaseInterface):
    """Interface for connecting to a SQLite database

    SQLite serializes writers on a single connection, so every transaction
    shares it. The connection runs in autocommit mode and transactions are
    issued explicitly.
    """

    scheme = ""

    def __init__(self, db_path: str, namespace: Optional[Namespace] = None):
        self._db_path = db_path
        super().__init__(namespace=namespace)
        self._conn: Optional[aiosqlite.Connection] = None

    def _setup_pool(self):
        if not AIOSQLITE_ENABLED:
            raise SandboxError(
                "SQLite driver not found. Try reinstalling txsandbox: "
                "pip install txsandbox[sqlite]"
            )

    async def open(self):
        """Open the connection to the database"""
        self._conn = await aiosqlite.connect(
            self._db_path, isolation_level=None
        )
        self._conn.row_factory = aiosqlite.Row

    async def close(self):
        """Close the connection to the database"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _connection(self, timeout: Optional[float] = None):
        close_when_done = False
        if self._conn is None:
            close_when_done = True
            await self.open()
        try:
            yield self._conn
        finally:
            if close_when_done:
                await self.close()

    def begin_statements(self, isolation_level: IsolationLevel) -> List[str]:
        statements = ["BEGIN"]
        if isolation_level is IsolationLevel.READ_UNCOMMITTED:
            statements.insert(0, "PRAGMA read_uncommitted = true")
        return statements
