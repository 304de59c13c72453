from __future__ import annotations

import logging
import warnings
from contextvars import ContextVar
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from txsandbox.events import EventNotifier, TransactionEvent
from txsandbox.exception import (
    ConfigurationError,
    InvariantViolationError,
    TransactionalWarning,
)

from .interfaces import TRANSACTION_KEY, IsolationLevel

if TYPE_CHECKING:
    from txsandbox.base.interface import BaseInterface
    from txsandbox.context import Namespace

    from .base import Transaction
    from .savepoint import Savepoint

logger = logging.getLogger(__name__)

DatabaseAccessor = Union["BaseInterface", Callable[[], "BaseInterface"]]

NO_NAMESPACE_MESSAGE = (
    "The database does not have a namespace. Set one by calling "
    "pool.use_namespace(create_namespace(name)) so that queries "
    "automatically join the transaction of the running test"
)


def get_last_unresolved(root: Transaction) -> Transaction:
    """Newest unfinished savepoint of ``root``, or ``root`` itself"""
    for child in reversed(root.children):
        if not child.finished:
            return child
    return root


class TransactionManager:
    """
    Opens a transaction, or a savepoint within the current one, for every
    boundary and resolves them in reverse order.

    The current root transaction lives in the ambient namespace of the
    database, so the manager never needs handles passed back to it.
    """

    isolation_level = IsolationLevel.READ_UNCOMMITTED

    def __init__(
        self,
        database: DatabaseAccessor,
        *,
        commit_on_failure: bool = False,
        notifier: Optional[EventNotifier] = None,
    ) -> None:
        if not database:
            raise ConfigurationError("undefined parameter 'database'")
        self._database = database
        self.commit_on_failure = commit_on_failure
        self.notifier = notifier or EventNotifier()
        self._sanctioned: ContextVar[bool] = ContextVar(
            "sanctioned_commit", default=False
        )

    def get_database(self) -> BaseInterface:
        database: Any = self._database
        if hasattr(database, "begin_transaction"):
            return database
        return database()

    @property
    def namespace(self) -> Namespace:
        namespace = self.get_database().namespace
        if namespace is None:
            raise ConfigurationError(NO_NAMESPACE_MESSAGE)
        return namespace

    def get_namespace_name(self) -> str:
        return self.namespace.name

    def current_transaction(self) -> Optional[Transaction]:
        return self.namespace.get(TRANSACTION_KEY)

    def get_last_unresolved(
        self, root: Optional[Transaction] = None
    ) -> Transaction:
        if root is None:
            root = self.current_transaction()
        if root is None:
            raise InvariantViolationError(
                "No transaction in the current context to resolve. "
                "The teardown hook ran without a matching setup hook"
            )
        return get_last_unresolved(root)

    async def open(self, descriptor: Optional[str] = None) -> Transaction:
        """Open a root transaction, or a savepoint inside the current one"""
        namespace = self.namespace
        current = namespace.get(TRANSACTION_KEY)
        if current is not None and current.finished:
            logger.debug("Discarding finished %s from the context", current)
            current = None
        transaction = await self.get_database().begin_transaction(
            parent=current, isolation_level=self.isolation_level
        )
        if current is None:
            transaction.on_savepoint(self._guard_commit)
            namespace.set(TRANSACTION_KEY, transaction)

        logger.debug("Opened %s for %s", transaction, descriptor)
        self.notifier.emit(TransactionEvent.STARTED, transaction, descriptor)
        return transaction

    async def stop(
        self, failed: bool = False, descriptor: Optional[str] = None
    ) -> Transaction:
        """Resolve the innermost unresolved transaction of the context.

        It is committed when ``failed`` and the commit on failure policy are
        both set, and rolled back otherwise.
        """
        if failed and self.commit_on_failure:
            return await self._resolve(descriptor, commit=True)
        return await self._resolve(descriptor, commit=False)

    async def _resolve(
        self, descriptor: Optional[str], commit: bool
    ) -> Transaction:
        ended = self.get_last_unresolved()
        if ended.finished:
            if ended.parent is None:
                self.namespace.set(TRANSACTION_KEY, None)
            return ended

        try:
            if commit:
                token = self._sanctioned.set(True)
                try:
                    await ended.commit()
                finally:
                    self._sanctioned.reset(token)
            else:
                await ended.rollback()
        finally:
            if ended.parent is None and ended.finished:
                self.namespace.set(TRANSACTION_KEY, None)

        if commit:
            logger.debug("Committed %s for %s", ended, descriptor)
            self.notifier.emit(TransactionEvent.COMMITTED, ended, descriptor)
        else:
            logger.debug("Rolled back %s for %s", ended, descriptor)
            self.notifier.emit(TransactionEvent.ROLLED_BACK, ended, descriptor)
        return ended

    def _guard_commit(self, savepoint: Savepoint) -> None:
        commit = savepoint.commit
        sanctioned = self._sanctioned

        @wraps(commit)
        async def guarded_commit():
            if not sanctioned.get():
                root = savepoint.root
                root.isolation_broken = True
                logger.warning(
                    "Savepoint %s was committed outside of the sandbox, "
                    "transaction %s no longer isolates its changes",
                    savepoint.name,
                    root.transaction_id,
                )
                warnings.warn(
                    "transaction commits are disabled in order for tests "
                    "to use the transactional pattern",
                    TransactionalWarning,
                    stacklevel=2,
                )
            return await commit()

        savepoint.commit = guarded_commit  # type: ignore[method-assign]
