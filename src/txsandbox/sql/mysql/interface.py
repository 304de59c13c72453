from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

from txsandbox.base.interface import BaseInterface
from txsandbox.exception import SandboxError
from txsandbox.transaction.interfaces import IsolationLevel

try:
    from asyncmy import Connection, create_pool

    MYSQL_ENABLED = True
except ModuleNotFoundError:
    MYSQL_ENABLED = False
    Connection = type("Connection", (), {})  # type: ignore


class MysqlPool(BaseInterface):
    """Interface for connecting to a MySQL database"""

    scheme = "mysql"

    def _setup_pool(self):
        if not MYSQL_ENABLED:
            raise SandboxError(
                "MySQL driver not found. Try reinstalling txsandbox: "
                "pip install txsandbox[mysql]"
            )
        self._pool = create_pool(
            user=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            db=self.db,
            autocommit=True,
        )

    async def open(self):
        """Open connections to the pool"""
        self._pool = await self._pool

    async def close(self):
        """Close connections to the pool"""
        self._pool.close()
        await self._pool.wait_closed()

    @asynccontextmanager
    async def _connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[Connection]:
        async with self._pool.acquire() as conn:
            yield conn

    def begin_statements(self, isolation_level: IsolationLevel) -> List[str]:
        return [
            f"SET TRANSACTION ISOLATION LEVEL {isolation_level.value}",
            "START TRANSACTION",
        ]

    async def run_statement(self, connection: Any, statement: str) -> None:
        async with connection.cursor() as cursor:
            await cursor.execute(statement)
