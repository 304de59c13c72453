from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

import pytest

from txsandbox.base.interface import BaseInterface
from txsandbox.context import create_namespace, reset_namespaces
from txsandbox.transaction import TransactionManager


class FakeConnection:
    def __init__(self):
        self.statements: List[str] = []
        self.fail_on: Optional[str] = None

    async def execute(self, statement: str):
        if self.fail_on and statement.startswith(self.fail_on):
            raise RuntimeError(f"engine rejected {statement}")
        self.statements.append(statement)
        return self


class FakePool(BaseInterface):
    scheme = "fake"

    def _setup_pool(self):
        self.connections: List[FakeConnection] = []
        self.released = 0
        self.fail_on: Optional[str] = None

    async def open(self): ...

    async def close(self): ...

    @asynccontextmanager
    async def _connection(self, timeout: Optional[float] = None):
        connection = FakeConnection()
        connection.fail_on = self.fail_on
        self.connections.append(connection)
        try:
            yield connection
        finally:
            self.released += 1


class EventRecorder:
    def __init__(self, notifier):
        self.events: List[Tuple[str, object, Optional[str]]] = []
        for name in ("transaction-started", "committed", "rolled-back"):
            notifier.subscribe(name, self._handler(name))

    def _handler(self, name):
        def handler(transaction, descriptor):
            self.events.append((name, transaction, descriptor))

        return handler

    def names(self):
        return [(name, descriptor) for name, _, descriptor in self.events]


@pytest.fixture(autouse=True)
def reset_registry():
    reset_namespaces()


@pytest.fixture
def namespace():
    return create_namespace("test")


@pytest.fixture
def pool(namespace):
    return FakePool(namespace=namespace)


@pytest.fixture
def manager(pool):
    return TransactionManager(pool)


@pytest.fixture
def recorder(manager):
    return EventRecorder(manager.notifier)
