import warnings

import pytest

from txsandbox.events import EventNotifier
from txsandbox.exception import (
    ConfigurationError,
    InvariantViolationError,
    NoContextError,
    TransactionalWarning,
)
from txsandbox.transaction import (
    TRANSACTION_KEY,
    IsolationLevel,
    Savepoint,
    Transaction,
    TransactionError,
    TransactionManager,
    TransactionState,
    get_last_unresolved,
)

from .conftest import EventRecorder, FakePool


async def test_open_root_transaction(namespace, pool, manager, recorder):
    async def scenario():
        root = await manager.open("Suite")

        assert namespace.get(TRANSACTION_KEY) is root
        assert isinstance(root, Transaction)
        assert root.parent is None
        assert root.children == []
        assert not root.finished
        assert root.isolation_level is IsolationLevel.READ_UNCOMMITTED
        assert root.connection.statements == [
            "BEGIN ISOLATION LEVEL READ UNCOMMITTED"
        ]
        return root

    root = await namespace.run(scenario)
    assert recorder.events == [("transaction-started", root, "Suite")]


async def test_open_inside_transaction_creates_savepoint(namespace, manager):
    async def scenario():
        root = await manager.open("Suite")
        savepoint = await manager.open("Suite > test1")

        assert isinstance(savepoint, Savepoint)
        assert savepoint.parent is root
        assert root.children == [savepoint]
        assert namespace.get(TRANSACTION_KEY) is root
        assert savepoint.connection is root.connection
        assert root.connection.statements[-1] == (
            f"SAVEPOINT {savepoint.name}"
        )

    await namespace.run(scenario)


async def test_stop_resolves_in_lifo_order(namespace, manager, recorder):
    async def scenario():
        a = await manager.open("A")
        b = await manager.open("B")
        c = await manager.open("C")

        assert await manager.stop(False, "C") is c
        assert c.finished and not b.finished and not a.finished
        assert await manager.stop(False, "B") is b
        assert b.finished and not a.finished
        assert namespace.get(TRANSACTION_KEY) is a
        assert await manager.stop(False, "A") is a
        assert a.finished
        assert namespace.get(TRANSACTION_KEY) is None
        return a, b, c

    a, b, c = await namespace.run(scenario)
    assert [
        (name, handle)
        for name, handle, _ in recorder.events
        if name == "rolled-back"
    ] == [("rolled-back", c), ("rolled-back", b), ("rolled-back", a)]


@pytest.mark.parametrize("depth", [0, 1, 3, 6])
async def test_context_is_empty_after_unwinding(namespace, manager, depth):
    async def scenario():
        for level in range(depth + 1):
            await manager.open(f"level {level}")
        for level in reversed(range(depth + 1)):
            await manager.stop(False, f"level {level}")
        return namespace.get(TRANSACTION_KEY)

    assert await namespace.run(scenario) is None


async def test_stop_without_transaction(namespace, manager):
    async def scenario():
        await manager.stop(False, "orphan")

    with pytest.raises(InvariantViolationError):
        await namespace.run(scenario)


async def test_stop_outside_chain(manager):
    with pytest.raises(NoContextError):
        await manager.stop(False, "orphan")


async def test_stop_returns_finished_handle_unchanged(namespace, manager):
    async def scenario():
        root = await manager.open("Suite")
        await root.rollback()
        statements = list(root.connection.statements)

        assert await manager.stop(False, "Suite") is root
        assert root.state is TransactionState.ROLLED_BACK
        assert root.connection.statements == statements
        assert namespace.get(TRANSACTION_KEY) is None

    await namespace.run(scenario)


async def test_open_after_root_finished_elsewhere(namespace, manager):
    async def scenario():
        first = await manager.open("first")
        await first.commit()

        second = await manager.open("second")
        assert second is not first
        assert second.parent is None
        assert namespace.get(TRANSACTION_KEY) is second
        await manager.stop(False, "second")
        return first, second

    first, second = await namespace.run(scenario)
    assert first.state is TransactionState.COMMITTED
    assert second.state is TransactionState.ROLLED_BACK


async def test_get_last_unresolved(namespace, manager):
    async def scenario():
        root = await manager.open("root")
        assert get_last_unresolved(root) is root

        first = await manager.open("first")
        second = await manager.open("second")
        assert manager.get_last_unresolved() is second

        await second.rollback()
        assert get_last_unresolved(root) is first

        await first.rollback()
        assert get_last_unresolved(root) is root

    await namespace.run(scenario)


async def test_failed_test_is_rolled_back_by_default(namespace, manager):
    async def scenario():
        await manager.open("Suite")
        savepoint = await manager.open("Suite > test1")
        await manager.stop(True, "Suite > test1")
        return savepoint

    savepoint = await namespace.run(scenario)
    assert savepoint.state is TransactionState.ROLLED_BACK
    assert savepoint.connection.statements[-2:] == [
        f"ROLLBACK TO SAVEPOINT {savepoint.name}",
        f"RELEASE SAVEPOINT {savepoint.name}",
    ]


async def test_rollback_scenario(namespace, manager, recorder):
    async def scenario():
        t1 = await manager.open("Suite beforeAll")
        t2 = await manager.open("Suite > test1")
        await manager.stop(False, "Suite > test1")
        await manager.stop(False, "Suite beforeAll")
        assert namespace.get(TRANSACTION_KEY) is None
        return t1, t2

    t1, t2 = await namespace.run(scenario)
    assert recorder.events == [
        ("transaction-started", t1, "Suite beforeAll"),
        ("transaction-started", t2, "Suite > test1"),
        ("rolled-back", t2, "Suite > test1"),
        ("rolled-back", t1, "Suite beforeAll"),
    ]
    assert t1.connection.statements[-1] == "ROLLBACK"


async def test_commit_on_failure_scenario(namespace, pool):
    notifier = EventNotifier()
    recorder = EventRecorder(notifier)
    manager = TransactionManager(
        pool, commit_on_failure=True, notifier=notifier
    )

    async def scenario():
        t1 = await manager.open("Suite beforeAll")
        t2 = await manager.open("test1")
        await manager.stop(True, "test1")
        t3 = await manager.open("test2")
        await manager.stop(False, "test2")
        await manager.stop(False, "Suite beforeAll")
        return t1, t2, t3

    with warnings.catch_warnings():
        warnings.simplefilter("error", TransactionalWarning)
        t1, t2, t3 = await namespace.run(scenario)

    assert t2.state is TransactionState.COMMITTED
    assert t3.state is TransactionState.ROLLED_BACK
    assert t1.state is TransactionState.ROLLED_BACK
    assert not t1.isolation_broken
    assert ("committed", t2, "test1") in recorder.events
    assert recorder.events[-1] == ("rolled-back", t1, "Suite beforeAll")


async def test_open_failure_propagates(namespace, pool, manager, recorder):
    pool.fail_on = "BEGIN"

    async def scenario():
        with pytest.raises(TransactionError):
            await manager.open("Suite")
        return namespace.get(TRANSACTION_KEY)

    assert await namespace.run(scenario) is None
    assert recorder.events == []
    assert pool.released == 1


async def test_savepoint_rollback_failure_propagates(namespace, manager):
    async def scenario():
        root = await manager.open("Suite")
        await manager.open("Suite > test1")
        root.connection.fail_on = "ROLLBACK TO SAVEPOINT"
        with pytest.raises(TransactionError):
            await manager.stop(False, "Suite > test1")
        assert namespace.get(TRANSACTION_KEY) is root

    await namespace.run(scenario)


async def test_root_rollback_failure_still_clears_context(
    namespace, pool, manager
):
    async def scenario():
        root = await manager.open("Suite")
        root.connection.fail_on = "ROLLBACK"
        with pytest.raises(TransactionError):
            await manager.stop(False, "Suite")
        assert root.finished
        assert namespace.get(TRANSACTION_KEY) is None

    await namespace.run(scenario)
    assert pool.released == 1


async def test_out_of_band_commit_warns(namespace, manager):
    async def scenario():
        root = await manager.open("Suite")
        savepoint = await manager.open("Suite > test1")
        with pytest.warns(TransactionalWarning):
            await savepoint.commit()
        assert savepoint.state is TransactionState.COMMITTED
        assert root.isolation_broken
        return root

    root = await namespace.run(scenario)
    assert root.connection.statements[-1].startswith("RELEASE SAVEPOINT")


async def test_user_savepoints_are_guarded(namespace, manager):
    async def scenario():
        root = await manager.open("Suite")
        savepoint = await root.savepoint()
        assert manager.get_last_unresolved() is savepoint
        with pytest.warns(TransactionalWarning):
            await savepoint.commit()
        assert root.isolation_broken

    await namespace.run(scenario)


async def test_sanctioned_commit_does_not_warn(namespace, pool):
    manager = TransactionManager(pool, commit_on_failure=True)

    async def scenario():
        root = await manager.open("Suite")
        await manager.open("Suite > test1")
        with warnings.catch_warnings():
            warnings.simplefilter("error", TransactionalWarning)
            await manager.stop(True, "Suite > test1")
        assert not root.isolation_broken

    await namespace.run(scenario)


async def test_database_accessor_can_be_callable(namespace, pool):
    manager = TransactionManager(lambda: pool)

    async def scenario():
        return await manager.open("Suite")

    root = await namespace.run(scenario)
    assert root.pool is pool
    assert manager.get_namespace_name() == "test"


def test_missing_database():
    with pytest.raises(ConfigurationError):
        TransactionManager(None)


async def test_pool_without_namespace():
    manager = TransactionManager(FakePool())
    with pytest.raises(ConfigurationError):
        await manager.open("Suite")
