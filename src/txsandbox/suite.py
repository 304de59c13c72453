"""
A hierarchical suite tree and an asynchronous runner for it.

Hooks and tests may be plain functions or coroutine functions. Each-hooks
are called with the running :class:`Case`, all-hooks with their
:class:`Suite`, and test bodies with no arguments.

Example:

```python
root = Suite()
users = root.describe("users")

@users.before_all.append
async def seed(suite):
    ...

@users.it("creates a user")
async def creates_a_user():
    ...

report = await SuiteRunner(root).run()
```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from inspect import isawaitable
from typing import Any, Callable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

Hook = Callable[..., Any]
TestBody = Callable[[], Any]
TITLE_SEPARATOR = " > "


class CaseState(Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class HookList:
    """Explicitly ordered list of hooks"""

    def __init__(self) -> None:
        self._hooks: List[Hook] = []

    def __iter__(self) -> Iterator[Hook]:
        return iter(list(self._hooks))

    def __len__(self) -> int:
        return len(self._hooks)

    def __getitem__(self, index: int) -> Hook:
        return self._hooks[index]

    def insert_front(self, hook: Hook) -> Hook:
        self._hooks.insert(0, hook)
        return hook

    def insert_back(self, hook: Hook) -> Hook:
        self._hooks.append(hook)
        return hook

    append = insert_back

    def wrap(self, decorator: Callable[[Hook], Hook]) -> None:
        """Replace every hook with ``decorator(hook)``, keeping the order"""
        self._hooks = [decorator(hook) for hook in self._hooks]


class Case:
    def __init__(
        self, title: str, fn: Callable[[], Any], parent: Suite
    ) -> None:
        self.title = title
        self.fn = fn
        self.parent = parent
        self.state = CaseState.PENDING
        self.error: Optional[BaseException] = None

    def __repr__(self) -> str:
        return f"<Case {self.full_title()} ({self.state.value})>"

    @property
    def failed(self) -> bool:
        return self.state is CaseState.FAILED

    def full_title(self) -> str:
        prefix = self.parent.full_title()
        if not prefix:
            return self.title
        return f"{prefix}{TITLE_SEPARATOR}{self.title}"

    def fail(self, error: BaseException) -> None:
        self.state = CaseState.FAILED
        if self.error is None:
            self.error = error


class Suite:
    def __init__(self, title: str = "", parent: Optional[Suite] = None):
        self.title = title
        self.parent = parent
        self.suites: List[Suite] = []
        self.tests: List[Case] = []
        self.before_all = HookList()
        self.before_each = HookList()
        self.after_each = HookList()
        self.after_all = HookList()
        self.instrumented = False

    def __repr__(self) -> str:
        return f"<Suite {self.full_title() or '(root)'}>"

    @property
    def root(self) -> bool:
        return self.parent is None

    def full_title(self) -> str:
        if self.parent is None:
            return self.title
        prefix = self.parent.full_title()
        if not prefix:
            return self.title
        return f"{prefix}{TITLE_SEPARATOR}{self.title}"

    def ancestors(self) -> List[Suite]:
        """Suites from the root down to, and including, this one"""
        chain = []
        suite: Optional[Suite] = self
        while suite is not None:
            chain.append(suite)
            suite = suite.parent
        return list(reversed(chain))

    def describe(self, title: str) -> Suite:
        suite = Suite(title, parent=self)
        self.suites.append(suite)
        return suite

    def add_test(self, title: str, fn: Callable[[], Any]) -> Case:
        case = Case(title, fn, self)
        self.tests.append(case)
        return case

    def it(self, title: str) -> Callable[[TestBody], TestBody]:
        def decorator(fn):
            self.add_test(title, fn)
            return fn

        return decorator

    def all_tests(self) -> Iterator[Case]:
        yield from self.tests
        for suite in self.suites:
            yield from suite.all_tests()


@dataclass
class RunReport:
    passed: List[Case] = field(default_factory=list)
    failed: List[Case] = field(default_factory=list)
    skipped: List[Case] = field(default_factory=list)
    hook_failures: List[Tuple[str, BaseException]] = field(
        default_factory=list
    )

    @property
    def ok(self) -> bool:
        return not self.failed and not self.hook_failures


class SuiteRunner:
    """Runs a suite tree depth first, the way mocha does"""

    def __init__(self, suite: Suite) -> None:
        self.suite = suite

    async def run(self) -> RunReport:
        report = RunReport()
        await self._run_suite(self.suite, report)
        logger.debug(
            "Run finished: %d passed, %d failed, %d skipped",
            len(report.passed),
            len(report.failed),
            len(report.skipped),
        )
        return report

    async def _run_suite(self, suite: Suite, report: RunReport) -> None:
        ready = await self._run_hooks(
            suite.before_all,
            suite,
            f"{suite!r} before all",
            report,
            stop_on_failure=True,
        )
        if ready:
            for case in suite.tests:
                await self._run_test(case, report)
            for child in suite.suites:
                await self._run_suite(child, report)
        else:
            for case in suite.all_tests():
                case.state = CaseState.SKIPPED
                report.skipped.append(case)
        await self._run_hooks(
            suite.after_all, suite, f"{suite!r} after all", report
        )

    async def _run_test(self, case: Case, report: RunReport) -> None:
        chain = case.parent.ancestors()
        title = case.full_title()

        ready = True
        for suite in chain:
            ready = await self._run_hooks(
                suite.before_each,
                case,
                f"{title} before each",
                report,
                stop_on_failure=True,
            )
            if not ready:
                break

        if ready:
            try:
                await _call(case.fn)
            except Exception as e:
                logger.debug("Test %s failed: %s", title, e)
                case.fail(e)
            else:
                case.state = CaseState.PASSED

        for suite in reversed(chain):
            await self._run_hooks(
                suite.after_each, case, f"{title} after each", report
            )

        if case.failed:
            report.failed.append(case)
        else:
            report.passed.append(case)

    async def _run_hooks(
        self,
        hooks: HookList,
        subject: Any,
        label: str,
        report: RunReport,
        stop_on_failure: bool = False,
    ) -> bool:
        ok = True
        for hook in hooks:
            try:
                await _call(hook, subject)
            except Exception as e:
                logger.error("Hook failed: %s: %s", label, e)
                report.hook_failures.append((label, e))
                if isinstance(subject, Case):
                    subject.fail(e)
                ok = False
                if stop_on_failure:
                    break
        return ok


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if isawaitable(result):
        result = await result
    return result
