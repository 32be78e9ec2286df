"""
SQLite-backed persistence.

SQLiteConnection wraps one sqlite3 connection for use from asyncio: each call
runs in a worker thread, and an asyncio.Lock serializes calls in issue order
so writes land in the order callers made them. SQLiteKeyValueStore is the
durable KeyValueStore used for the graph record.
"""

import asyncio
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from zenith.logging_config import get_logger
from zenith.utils.exceptions import PersistenceError

logger = get_logger(__name__)

T = TypeVar("T")

MEMORY_PATH = ":memory:"


class SQLiteConnection:
    """Lazily opened sqlite3 connection driven from the event loop.

    Attributes:
        db_path: Path to SQLite database file (or ":memory:")
    """

    def __init__(self, db_path: str | Path, schema: str = "") -> None:
        """
        Args:
            db_path: Path to SQLite database file (or ":memory:" for in-memory)
            schema: SQL script executed once when the connection opens
        """
        self.db_path = str(db_path)
        self._schema = schema
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != MEMORY_PATH:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self._schema:
            conn.executescript(self._schema)
            conn.commit()
        return conn

    async def open(self) -> None:
        async with self._lock:
            if self._conn is not None:
                return
            try:
                self._conn = await asyncio.to_thread(self._connect)
            except (sqlite3.Error, OSError) as e:
                raise PersistenceError(
                    f"Cannot open database {self.db_path}: {e}", original_error=e
                ) from e
            logger.debug("Opened database %s", self.db_path)

    async def close(self) -> None:
        async with self._lock:
            if self._conn is None:
                return
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
            logger.debug("Closed database %s", self.db_path)

    async def run(self, fn: Callable[[sqlite3.Connection], T], *, key: str = "") -> T:
        """
        Run fn(conn) in a worker thread, committing on success and rolling back on error.

        If the caller is cancelled the lock is held until the thread is done, so
        the next call never shares the connection with an unfinished transaction.

        Raises:
            PersistenceError: If the connection is closed or SQLite fails
        """
        async with self._lock:
            conn = self._conn
            if conn is None:
                raise PersistenceError(f"Database {self.db_path} is not open", key=key)

            def call() -> T:
                try:
                    result = fn(conn)
                    conn.commit()
                    return result
                except BaseException:
                    conn.rollback()
                    raise

            worker = asyncio.ensure_future(asyncio.to_thread(call))
            try:
                return await asyncio.shield(worker)
            except asyncio.CancelledError:
                # The thread still owns the connection until fn returns
                await _wait_out(worker)
                raise
            except sqlite3.Error as e:
                raise PersistenceError(
                    f"SQLite operation failed on {self.db_path}: {e}", key=key, original_error=e
                ) from e


async def _wait_out(worker: "asyncio.Future[T]") -> None:
    """Wait for a worker to finish, ignoring further cancellation of the waiter."""
    while not worker.done():
        try:
            await asyncio.wait({worker})
        except asyncio.CancelledError:
            continue
    if not worker.cancelled() and worker.exception() is not None:
        logger.error("Cancelled SQLite call failed: %s", worker.exception())


KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SQLiteKeyValueStore:
    """Durable KeyValueStore in a single SQLite table."""

    def __init__(self, db_path: str | Path) -> None:
        self._db = SQLiteConnection(db_path, KV_SCHEMA)

    @property
    def db_path(self) -> str:
        return self._db.db_path

    async def open(self) -> None:
        await self._db.open()

    async def close(self) -> None:
        await self._db.close()

    async def get(self, key: str) -> str | None:
        def read(conn: sqlite3.Connection) -> str | None:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

        return await self._db.run(read, key=key)

    async def set(self, key: str, value: str) -> None:
        def write(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

        await self._db.run(write, key=key)

    async def delete(self, key: str) -> None:
        def remove(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

        await self._db.run(remove, key=key)


__all__ = ["MEMORY_PATH", "SQLiteConnection", "SQLiteKeyValueStore"]
