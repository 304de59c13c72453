"""
Savepoint implementation for nested rollback points.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from .base import Transaction
from .interfaces import TransactionError, TransactionState

logger = logging.getLogger(__name__)


class Savepoint(Transaction):
    """
    A savepoint is a nested transaction inside of a parent, sharing its
    connection. It can be resolved independently of its siblings.
    """

    def __init__(self, parent: Transaction, name: Optional[str] = None):
        super().__init__(
            parent.pool, parent.connection, parent.isolation_level
        )
        self.parent = parent
        self.name = name or f"sp_{uuid4().hex[:8]}"

    def __str__(self) -> str:
        return f"<Savepoint {self.name} ({self.state.value})>"

    async def begin(self) -> None:
        if self.state is not TransactionState.PENDING:
            raise TransactionError(f"Savepoint {self.name} already begun")

        parent = self.parent
        if parent is None or not parent.is_active:
            raise TransactionError(
                f"Cannot create savepoint {self.name} - "
                f"parent transaction not active"
            )

        try:
            await self.pool.run_statement(
                self.connection, f"SAVEPOINT {self.name}"
            )
        except Exception as e:
            logger.error("Failed to create savepoint %s: %s", self.name, e)
            raise TransactionError(
                f"Failed to create savepoint {self.name}: {e}"
            ) from e

        self.state = TransactionState.ACTIVE
        logger.debug(
            "Created savepoint %s in transaction %s",
            self.name,
            self.root.transaction_id,
        )

    async def commit(self) -> None:
        """Release this savepoint, keeping its changes in the parent"""
        self._check_active("release savepoint")
        logger.debug("Releasing savepoint %s", self.name)

        try:
            await self.pool.run_statement(
                self.connection, f"RELEASE SAVEPOINT {self.name}"
            )
        except Exception as e:
            logger.error("Failed to release savepoint %s: %s", self.name, e)
            raise TransactionError(
                f"Failed to release savepoint {self.name}: {e}"
            ) from e
        self.state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        """Rollback to this savepoint and discard it"""
        self._check_active("rollback savepoint")
        logger.debug("Rolling back to savepoint %s", self.name)

        try:
            await self.pool.run_statement(
                self.connection, f"ROLLBACK TO SAVEPOINT {self.name}"
            )
            await self.pool.run_statement(
                self.connection, f"RELEASE SAVEPOINT {self.name}"
            )
        except Exception as e:
            logger.error(
                "Failed to rollback to savepoint %s: %s", self.name, e
            )
            raise TransactionError(
                f"Failed to rollback to savepoint {self.name}: {e}"
            ) from e
        self.state = TransactionState.ROLLED_BACK

    def _check_active(self, action: str) -> None:
        super()._check_active(action)
        parent = self.parent
        if parent is not None and not parent.is_active:
            raise TransactionError(
                f"Cannot {action} {self.name} - transaction not active"
            )
