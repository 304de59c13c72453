from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Protocol

from txsandbox.events import EventHandler, EventName, EventNotifier
from txsandbox.exception import ConfigurationError
from txsandbox.instrument import instrument
from txsandbox.transaction.manager import (
    NO_NAMESPACE_MESSAGE,
    DatabaseAccessor,
    TransactionManager,
)

if TYPE_CHECKING:
    from txsandbox.context import Namespace
    from txsandbox.suite import Suite

logger = logging.getLogger(__name__)


class Runner(Protocol):
    suite: Suite

    async def run(self) -> Any: ...


class Sandbox:
    """Main entryway for running a suite tree inside rolled back transactions.

    The database pool must have an ambient namespace, so that queries made
    anywhere inside a test find the transaction of that test.

    Example:

    ```python
    async def run():
        pool = SQLitePool("app.db", namespace=create_namespace("app"))
        sandbox = Sandbox(database=pool)
        report = await sandbox.run(SuiteRunner(root_suite))
    ```
    """

    def __init__(
        self,
        *,
        database: Optional[DatabaseAccessor] = None,
        commit_on_failure: bool = False,
        wrap_each_test: bool = True,
        wrap_each_nested_suite: bool = True,
        wrap_nested_suite_body: bool = True,
        on_transaction_started: Optional[EventHandler] = None,
        on_committed: Optional[EventHandler] = None,
        on_rolled_back: Optional[EventHandler] = None,
    ):
        """Initializer for Sandbox instance

        Args:
            database (Union[BaseInterface, Callable[[], BaseInterface]]):
                The pool to open transactions on, or a function returning it.
            commit_on_failure (bool, optional): Commit, rather than roll
                back, the boundaries of failed tests and suites so their
                state can be inspected. Defaults to `False`.
            wrap_each_test (bool, optional): Wrap every test in its own
                transaction. Defaults to `True`.
            wrap_each_nested_suite (bool, optional): Wrap every nested suite
                in its own transaction. Defaults to `True`.
            wrap_nested_suite_body (bool, optional): Wrap the body of every
                nested suite in a second transaction. Defaults to `True`.
            on_transaction_started (EventHandler, optional): Called with
                ``(transaction, descriptor)`` when a boundary opens.
            on_committed (EventHandler, optional): Called when a boundary
                is committed.
            on_rolled_back (EventHandler, optional): Called when a boundary
                is rolled back.

        Raises:
            ConfigurationError: If the database is missing, or has no
                namespace
        """
        if not database:
            raise ConfigurationError("undefined parameter 'database'")

        self.notifier = EventNotifier()
        self.manager = TransactionManager(
            database,
            commit_on_failure=commit_on_failure,
            notifier=self.notifier,
        )
        if self.manager.get_database().namespace is None:
            raise ConfigurationError(NO_NAMESPACE_MESSAGE)

        self.wrap_each_test = wrap_each_test
        self.wrap_each_nested_suite = wrap_each_nested_suite
        self.wrap_nested_suite_body = wrap_nested_suite_body

        for event, handler in (
            ("transaction-started", on_transaction_started),
            ("committed", on_committed),
            ("rolled-back", on_rolled_back),
        ):
            if handler is not None:
                self.on(event, handler)

    @property
    def namespace(self) -> Namespace:
        return self.manager.namespace

    @property
    def commit_on_failure(self) -> bool:
        return self.manager.commit_on_failure

    def on(self, event: EventName, handler: EventHandler) -> str:
        return self.notifier.subscribe(event, handler)

    def instrument(self, suite: Suite) -> bool:
        return instrument(
            suite,
            self.manager,
            wrap_each_test=self.wrap_each_test,
            wrap_each_nested_suite=self.wrap_each_nested_suite,
            wrap_nested_suite_body=self.wrap_nested_suite_body,
        )

    async def run(self, runner: Runner) -> Any:
        """Instrument the runner's suite and run it in a fresh chain"""
        return await self.namespace.run(self._run, runner)

    def _run(self, runner: Runner) -> Any:
        self.instrument(runner.suite)
        logger.debug(
            "Running %r in namespace %s", runner.suite, self.namespace.name
        )
        return runner.run()

