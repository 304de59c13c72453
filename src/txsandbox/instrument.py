"""
Installs transaction boundaries on a suite tree.

The pass runs once, before any test. Boundary hooks are registered so that
they tightly wrap the hooks already present: openers go to the front of the
before hooks, closers to the back of the after hooks. Every hook and test in
the tree is then bound to the ambient chain the pass runs in, so any query
nested anywhere below joins the transaction of its boundary.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterator, Optional

from txsandbox.exception import InvariantViolationError
from txsandbox.suite import Case, CaseState, Suite

if TYPE_CHECKING:
    from txsandbox.context import Slot
    from txsandbox.transaction import Transaction, TransactionManager

logger = logging.getLogger(__name__)

SUITE_BODY_SUFFIX = " beforeAll"


class BoundaryState(Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class Boundary:
    """One open/stop pair around a test or a suite"""

    def __init__(self, manager: TransactionManager, descriptor: str) -> None:
        self.manager = manager
        self.descriptor = descriptor
        self.state = BoundaryState.UNOPENED
        self.transaction: Optional[Transaction] = None

    def __repr__(self) -> str:
        return f"<Boundary {self.descriptor} ({self.state.value})>"

    async def open(self) -> Transaction:
        if self.state is not BoundaryState.UNOPENED:
            raise InvariantViolationError(
                f"Boundary {self.descriptor} is already {self.state.value}"
            )
        self.transaction = await self.manager.open(self.descriptor)
        self.state = BoundaryState.OPEN
        return self.transaction

    async def stop(self, failed: bool = False) -> Optional[Transaction]:
        if self.state is BoundaryState.UNOPENED:
            logger.debug("Boundary %s was never opened", self.descriptor)
            return None
        if self.state is not BoundaryState.OPEN:
            return self.transaction

        self.state = BoundaryState.RESOLVING
        try:
            ended = await self.manager.stop(failed, self.descriptor)
        except Exception:
            self.state = BoundaryState.OPEN
            raise
        if ended is not self.transaction:
            logger.warning(
                "Boundary %s resolved %s instead of %s",
                self.descriptor,
                ended,
                self.transaction,
            )
        self.state = BoundaryState.RESOLVED
        return self.transaction


def walk_suite(suite: Suite) -> Iterator[Suite]:
    """Pre-order traversal of a suite tree"""
    yield suite
    for child in suite.suites:
        yield from walk_suite(child)


def suite_failed(suite: Suite) -> bool:
    return any(
        case.state is CaseState.FAILED
        for node in walk_suite(suite)
        for case in node.tests
    )


def instrument(
    root: Suite,
    manager: TransactionManager,
    *,
    wrap_each_test: bool = True,
    wrap_each_nested_suite: bool = True,
    wrap_nested_suite_body: bool = True,
    context: Optional[Slot] = None,
) -> bool:
    """Install transaction boundaries on the tree below ``root``.

    Args:
        root (Suite): Top of the tree
        manager (TransactionManager): Manager the boundaries call into
        wrap_each_test (bool, optional): Wrap every test.
            Defaults to `True`.
        wrap_each_nested_suite (bool, optional): Wrap every non-root suite,
            around its own before/after all hooks. Defaults to `True`.
        wrap_nested_suite_body (bool, optional): Add a second boundary
            inside the nested suite one. Defaults to `True`.
        context (Slot, optional): Chain to bind hooks and tests to.
            Defaults to the active one.

    Returns:
        bool: `False` when the tree was already instrumented
    """
    if root.instrumented:
        logger.debug("%r is already instrumented", root)
        return False

    for suite in walk_suite(root):
        if suite is root:
            if wrap_each_test:
                _wrap_tests(suite, manager)
        elif wrap_each_nested_suite:
            _wrap_suite(suite, manager, wrap_nested_suite_body)

    namespace = manager.namespace
    if context is None:
        context = namespace.active
        if context is None:
            context = namespace.create_context()
    for suite in walk_suite(root):
        for hooks in (
            suite.before_all,
            suite.before_each,
            suite.after_each,
            suite.after_all,
        ):
            hooks.wrap(lambda hook: namespace.bind(hook, context))
        for case in suite.tests:
            case.fn = namespace.bind(case.fn, context)

    root.instrumented = True
    logger.debug("Instrumented %r", root)
    return True


def _wrap_tests(suite: Suite, manager: TransactionManager) -> None:
    boundaries: Dict[Case, Boundary] = {}

    async def open_test_transaction(case: Case):
        boundary = Boundary(manager, case.full_title())
        boundaries[case] = boundary
        await boundary.open()

    async def stop_test_transaction(case: Case):
        boundary = boundaries.get(case)
        if boundary is None:
            return None
        return await boundary.stop(case.failed)

    suite.before_each.insert_front(open_test_transaction)
    suite.after_each.insert_back(stop_test_transaction)


def _wrap_suite(
    suite: Suite, manager: TransactionManager, wrap_body: bool
) -> None:
    path = suite.full_title()
    descriptors = {"outer": path, "inner": f"{path}{SUITE_BODY_SUFFIX}"}
    boundaries: Dict[str, Boundary] = {}

    async def open_boundary(key: str):
        boundary = Boundary(manager, descriptors[key])
        boundaries[key] = boundary
        await boundary.open()

    async def stop_boundary(key: str):
        boundary = boundaries.get(key)
        if boundary is None:
            return None
        return await boundary.stop(suite_failed(suite))

    async def open_suite_transaction(_suite: Suite):
        await open_boundary("outer")

    async def open_suite_body_transaction(_suite: Suite):
        await open_boundary("inner")

    async def stop_suite_body_transaction(_suite: Suite):
        return await stop_boundary("inner")

    async def stop_suite_transaction(_suite: Suite):
        return await stop_boundary("outer")

    if wrap_body:
        suite.before_all.insert_front(open_suite_body_transaction)
    suite.before_all.insert_front(open_suite_transaction)

    if wrap_body:
        suite.after_all.insert_back(stop_suite_body_transaction)
    suite.after_all.insert_back(stop_suite_transaction)
