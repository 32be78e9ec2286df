"""Unit tests for the SQLite connection wrapper and key-value adapter."""

import asyncio
import sqlite3
import threading
from pathlib import Path

import pytest

from zenith.storage.sqlite import SQLiteConnection, SQLiteKeyValueStore
from zenith.utils.exceptions import PersistenceError


@pytest.mark.unit
class TestSQLiteConnection:
    def test_closed_connection_raises(self) -> None:
        async def scenario() -> None:
            await SQLiteConnection(":memory:").run(lambda conn: None, key="k")

        with pytest.raises(PersistenceError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.key == "k"

    def test_sqlite_error_is_wrapped_and_rolled_back(self) -> None:
        schema = "CREATE TABLE t (v INTEGER);"

        def insert_then_fail(conn: sqlite3.Connection) -> None:
            conn.execute("INSERT INTO t (v) VALUES (1)")
            conn.execute("SELECT * FROM missing")

        async def scenario() -> int:
            db = SQLiteConnection(":memory:", schema)
            await db.open()
            try:
                with pytest.raises(PersistenceError):
                    await db.run(insert_then_fail)
                return await db.run(
                    lambda conn: conn.execute("SELECT COUNT(*) FROM t").fetchone()[0]
                )
            finally:
                await db.close()

        assert asyncio.run(scenario()) == 0

    def test_cancelled_call_keeps_lock_until_thread_finishes(self) -> None:
        started = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def slow(conn: sqlite3.Connection) -> None:
            started.set()
            release.wait(5)
            order.append("slow")

        def fast(conn: sqlite3.Connection) -> None:
            order.append("fast")

        async def scenario() -> list[str]:
            db = SQLiteConnection(":memory:")
            await db.open()
            first = asyncio.create_task(db.run(slow))
            await asyncio.to_thread(started.wait, 5)
            first.cancel()
            second = asyncio.create_task(db.run(fast))
            await asyncio.sleep(0.05)
            before_release = list(order)
            release.set()
            with pytest.raises(asyncio.CancelledError):
                await first
            await second
            await db.close()
            return before_release

        before_release = asyncio.run(scenario())
        assert before_release == []
        assert order == ["slow", "fast"]


@pytest.mark.unit
class TestSQLiteKeyValueStore:
    def test_set_get_delete(self, tmp_path: Path) -> None:
        async def scenario():
            store = SQLiteKeyValueStore(tmp_path / "nested" / "graph.db")
            await store.open()
            try:
                await store.set("k", "one")
                await store.set("k", "two")
                value = await store.get("k")
                await store.delete("k")
                return value, await store.get("k")
            finally:
                await store.close()

        assert asyncio.run(scenario()) == ("two", None)
