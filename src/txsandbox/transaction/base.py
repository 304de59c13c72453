from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
)
from uuid import uuid4

from .interfaces import IsolationLevel, TransactionError, TransactionState

if TYPE_CHECKING:
    from txsandbox.base.interface import BaseInterface

    from .savepoint import Savepoint

logger = logging.getLogger(__name__)

SavepointListener = Callable[["Savepoint"], None]


class Transaction:
    """
    A root database transaction pinned to a single connection.

    Savepoints opened inside of it are kept in ``children`` in the order
    they were opened.
    """

    def __init__(
        self,
        pool: BaseInterface,
        connection: Any,
        isolation_level: IsolationLevel = IsolationLevel.READ_UNCOMMITTED,
        release: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.transaction_id = f"txn_{uuid4().hex[:8]}"
        self.pool = pool
        self.connection = connection
        self.isolation_level = isolation_level
        self.parent: Optional[Transaction] = None
        self.children: List[Savepoint] = []
        self.state = TransactionState.PENDING
        self.isolation_broken = False
        self._release = release
        self._savepoint_listeners: List[SavepointListener] = []

    def __str__(self) -> str:
        name = self.__class__.__name__
        return f"<{name} {self.transaction_id} ({self.state.value})>"

    @property
    def finished(self) -> bool:
        return self.state in (
            TransactionState.COMMITTED,
            TransactionState.ROLLED_BACK,
        )

    @property
    def is_active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    @property
    def root(self) -> Transaction:
        transaction = self
        while transaction.parent is not None:
            transaction = transaction.parent
        return transaction

    def on_savepoint(self, listener: SavepointListener) -> None:
        """Call ``listener`` with every savepoint registered under this root"""
        self._savepoint_listeners.append(listener)

    def add_child(self, savepoint: Savepoint) -> None:
        self.children.append(savepoint)
        for listener in self.root._savepoint_listeners:
            listener(savepoint)

    async def savepoint(self) -> Savepoint:
        """Open a savepoint nested in this transaction"""
        return await self.pool.begin_transaction(
            parent=self, isolation_level=self.isolation_level
        )

    async def begin(self) -> None:
        if self.state is not TransactionState.PENDING:
            raise TransactionError(
                f"Transaction {self.transaction_id} already begun"
            )

        logger.debug(
            "Beginning transaction %s at %s",
            self.transaction_id,
            self.isolation_level.value,
        )
        try:
            for statement in self.pool.begin_statements(self.isolation_level):
                await self.pool.run_statement(self.connection, statement)
        except Exception as e:
            await self._cleanup()
            raise TransactionError(
                f"Failed to begin transaction {self.transaction_id}: {e}"
            ) from e

        self.state = TransactionState.ACTIVE
        logger.info("Transaction %s started", self.transaction_id)

    async def commit(self) -> None:
        self._check_active("commit")
        logger.debug("Committing transaction %s", self.transaction_id)

        try:
            await self.pool.run_statement(self.connection, "COMMIT")
            self.state = TransactionState.COMMITTED
            logger.info("Transaction %s committed", self.transaction_id)
        except Exception as e:
            logger.error(
                "Commit failed for %s, attempting rollback: %s",
                self.transaction_id,
                e,
            )
            try:
                await self.pool.run_statement(self.connection, "ROLLBACK")
            except Exception as rollback_error:
                logger.critical(
                    "Rollback after failed commit also failed: %s",
                    rollback_error,
                )
            self.state = TransactionState.ROLLED_BACK
            raise TransactionError(
                f"Failed to commit transaction {self.transaction_id}: {e}"
            ) from e
        finally:
            await self._cleanup()

    async def rollback(self) -> None:
        self._check_active("rollback")
        logger.debug("Rolling back transaction %s", self.transaction_id)

        try:
            await self.pool.run_statement(self.connection, "ROLLBACK")
            logger.info("Transaction %s rolled back", self.transaction_id)
        except Exception as e:
            logger.critical(
                "Rollback failed for %s: %s", self.transaction_id, e
            )
            raise TransactionError(
                f"Failed to rollback transaction {self.transaction_id}: {e}"
            ) from e
        finally:
            # The connection is handed back either way, so the transaction
            # cannot be used any further.
            self.state = TransactionState.ROLLED_BACK
            await self._cleanup()

    def _check_active(self, action: str) -> None:
        if self.finished:
            raise TransactionError(
                f"Cannot {action} {self.transaction_id} - already finalized"
            )
        if not self.is_active:
            raise TransactionError(
                f"Cannot {action} {self.transaction_id} - not begun"
            )

    async def _cleanup(self) -> None:
        release, self._release = self._release, None
        if release is None:
            return
        try:
            await release()
        except Exception as e:
            logger.error(
                "Error releasing connection of transaction %s: %s",
                self.transaction_id,
                e,
            )
