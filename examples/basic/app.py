import asyncio
import logging

from txsandbox import Sandbox, SQLitePool, Suite, SuiteRunner, create_namespace

pool = SQLitePool("users.db", namespace=create_namespace("app"))


async def count_users() -> int:
    async with pool.connection() as conn:
        async with conn.execute("SELECT COUNT(*) FROM users") as cursor:
            (count,) = await cursor.fetchone()
    return count


def build_suite() -> Suite:
    root = Suite()
    users = root.describe("User model")
    counts = {}

    @users.before_all.append
    async def initial_count(suite):
        counts["initial"] = await count_users()

    @users.it("creates a user")
    async def creates_a_user():
        async with pool.connection() as conn:
            await conn.execute(
                "INSERT INTO users (username) VALUES (?)",
                (f"username_{counts['initial'] + 1}",),
            )
        assert await count_users() == counts["initial"] + 1

    @users.after_all.append
    async def nothing_left_behind(suite):
        assert await count_users() == counts["initial"]

    return root


def log_event(action):
    def handler(transaction, path):
        print(action, "transaction", transaction.transaction_id, path)

    return handler


async def run():
    await pool.open()
    async with pool.connection() as conn:
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS users "
            "(id INTEGER PRIMARY KEY, username TEXT)"
        )

    sandbox = Sandbox(
        database=pool,
        on_transaction_started=log_event("started"),
        on_committed=log_event("committed"),
        on_rolled_back=log_event("rolled back"),
    )
    report = await sandbox.run(SuiteRunner(build_suite()))
    print(report)
    await pool.close()


logging.basicConfig(level=logging.INFO)
asyncio.run(run())
