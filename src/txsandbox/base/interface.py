from __future__ import annotations

from abc import ABC, abstractmethod
from collections import namedtuple
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Optional
from urllib.parse import urlparse

from txsandbox.exception import SandboxError
from txsandbox.transaction.base import Transaction
from txsandbox.transaction.interfaces import TRANSACTION_KEY, IsolationLevel
from txsandbox.transaction.savepoint import Savepoint

if TYPE_CHECKING:
    from txsandbox.context import Namespace

UrlMapping = namedtuple("UrlMapping", ("key", "cast"))

URLPARSE_MAPPING = {
    "hostname": UrlMapping("_host", str),
    "username": UrlMapping("_user", str),
    "password": UrlMapping("_password", str),
    "port": UrlMapping("_port", int),
    "path": UrlMapping("_db", lambda value: value.replace("/", "")),
    "query": UrlMapping("_query", str),
}


class BaseInterface(ABC):
    scheme = "dummy"

    @abstractmethod
    def _setup_pool(self): ...

    @abstractmethod
    async def open(self): ...

    @abstractmethod
    async def close(self): ...

    @abstractmethod
    def _connection(self, timeout: Optional[float] = None):
        """Async context manager yielding a connection of its own"""

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        db: Optional[str] = None,
        query: Optional[str] = None,
        namespace: Optional[Namespace] = None,
    ) -> None:
        """DB class initialization.

        Args:
            dsn (str, optional): DB data source name
            host (str, optional): DB address URL or IP
            port (int, optional): DB port
            password (str, optional): DB password
            db (str, optional): DB name
            query (str, optional): DB query parameters. Defaults to None
            namespace (Namespace, optional): Ambient namespace used to find
                the transaction of the running chain. Defaults to None
        """

        if dsn and host:
            raise SandboxError("Cannot connect to DB using host and dsn")

        if not dsn:
            if port and (
                not isinstance(port, int) or port not in range(0, 65536)
            ):
                raise SandboxError(
                    "port: must be an integer between 0 and 65535"
                )

            if host and (not isinstance(host, str) or not len(host) > 0):
                raise SandboxError(
                    "host: must be a string at least 1 character long"
                )

        if password is not None and (
            not isinstance(password, str) or not len(password) > 0
        ):
            raise SandboxError(
                "password: must be a string at least 1 character long"
            )

        self._dsn = dsn
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._db = db
        self._query = query
        self._full_dsn: Optional[str] = None
        self._namespace = namespace

        self._populate_connection_args()
        self._populate_dsn()
        self._setup_pool()

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.dsn}>"

    def _populate_connection_args(self):
        dsn = self.dsn or ""
        if dsn:
            parts = urlparse(dsn)
            defaults = {
                "port": (
                    5432
                    if "postgres" in dsn
                    else 3306 if "mysql" in dsn else None
                ),
                "hostname": "localhost",
                "username": None,
                "password": None,
                "path": "/",
                "query": "",
            }
            for key, mapping in URLPARSE_MAPPING.items():
                if not getattr(self, mapping.key):
                    value = getattr(parts, key, None)
                    if value is None:
                        value = defaults.get(key)
                    if value is not None:
                        setattr(self, mapping.key, mapping.cast(value))

    def _populate_dsn(self):
        self._dsn = (
            (
                f"{self.scheme}://{self.user}:...@"
                f"{self.host}:{self.port}/{self.db}"
            )
            if self.password
            else (
                f"{self.scheme}://{self.user}@"
                f"{self.host}:{self.port}/{self.db}"
            )
        )
        self._full_dsn = (
            (
                f"{self.scheme}://{self.user}:{self.password}@"
                f"{self.host}:{self.port}/{self.db}"
            )
            if self.password
            else self.dsn
        )
        self._full_dsn += f"?{self._query}" if self._query else ""

    @property
    def dsn(self):
        return self._dsn

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def user(self):
        return self._user

    @property
    def password(self):
        return self._password

    @property
    def db(self):
        return self._db

    @property
    def full_dsn(self):
        return self._full_dsn

    @property
    def namespace(self) -> Optional[Namespace]:
        return self._namespace

    def use_namespace(self, namespace: Namespace) -> None:
        """Make queries on this pool join the transaction of the running
        chain in ``namespace``"""
        self._namespace = namespace

    def current_transaction(self) -> Optional[Transaction]:
        namespace = self._namespace
        if namespace is None or namespace.active is None:
            return None
        return namespace.get(TRANSACTION_KEY)

    def existing_connection(self):
        transaction = self.current_transaction()
        if transaction is None or transaction.finished:
            return None
        return transaction.connection

    def in_transaction(self) -> bool:
        return self.existing_connection() is not None

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[Any]:
        """Obtain a connection to the database

        Inside of a chain that holds an open transaction, the connection of
        that transaction is used.

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to connect. Defaults to `None`.

        Yields:
            Iterator[AsyncIterator[Connection]]: A database connection
        """
        existing = self.existing_connection()
        if existing is not None:
            yield existing
        else:
            async with self._connection(timeout=timeout) as conn:
                yield conn

    def begin_statements(self, isolation_level: IsolationLevel) -> List[str]:
        return [f"BEGIN ISOLATION LEVEL {isolation_level.value}"]

    async def run_statement(self, connection: Any, statement: str) -> None:
        await connection.execute(statement)

    async def begin_transaction(
        self,
        parent: Optional[Transaction] = None,
        isolation_level: IsolationLevel = IsolationLevel.READ_UNCOMMITTED,
    ) -> Transaction:
        """Begin a root transaction, or a savepoint when ``parent`` is given

        A root transaction holds on to a dedicated connection until it is
        committed or rolled back.
        """
        if parent is not None:
            savepoint = Savepoint(parent)
            await savepoint.begin()
            parent.add_child(savepoint)
            return savepoint

        context = self._connection()
        connection = await context.__aenter__()

        async def release():
            await context.__aexit__(None, None, None)

        transaction = Transaction(
            self, connection, isolation_level=isolation_level, release=release
        )
        await transaction.begin()
        return transaction
