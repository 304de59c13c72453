from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from txsandbox.base.interface import BaseInterface
from txsandbox.exception import SandboxError

try:
    from psycopg import AsyncConnection
    from psycopg_pool import AsyncConnectionPool

    POSTGRES_ENABLED = True
except ModuleNotFoundError:
    POSTGRES_ENABLED = False
    AsyncConnection = type("Connection", (), {})  # type: ignore
    AsyncConnectionPool = type("Connection", (), {})  # type: ignore


class PostgresPool(BaseInterface):
    """Interface for connecting to a Postgres database

    Connections are handed out in autocommit mode, transactions are issued
    explicitly.
    """

    scheme = "postgres"

    def _setup_pool(self):
        if not POSTGRES_ENABLED:
            raise SandboxError(
                "Postgres driver not found. Try reinstalling txsandbox: "
                "pip install txsandbox[postgres]"
            )
        self._pool = AsyncConnectionPool(
            self.full_dsn, kwargs={"autocommit": True}, open=False
        )

    async def open(self):
        """Open connections to the pool"""
        await self._pool.open()

    async def close(self):
        """Close connections to the pool"""
        await self._pool.close()

    @asynccontextmanager
    async def _connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[AsyncConnection]:
        async with self._pool.connection(timeout=timeout) as conn:
            yield conn
