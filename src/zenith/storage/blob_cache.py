"""
Blob cache for generated images.

Image bytes are kept out of the graph record in their own SQLite database
with two tables: ``blobs`` (id -> raw bytes) and ``meta`` (id -> size,
created_at, last_accessed_at). A blob row exists if and only if its meta row
exists; every write and delete touches both in one transaction.

Capacity is bounded by entry count and total bytes. The cache never evicts on
its own: store_with_admission() reports CLEANUP_NEEDED and the caller decides
(see zenith.core.governor). evict_until_fits() removes least recently
accessed entries first, using the index on last_accessed_at.

I/O failures are logged and reported as sentinels (None / False), never raised.
"""

import sqlite3
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from zenith.core.config import (
    DEFAULT_MAX_IMAGES,
    DEFAULT_MAX_STORAGE_MB,
    DEFAULT_WARNING_THRESHOLD_PERCENT,
    Config,
)
from zenith.logging_config import get_logger
from zenith.storage.sqlite import MEMORY_PATH, SQLiteConnection
from zenith.utils.exceptions import ConfigurationError, PersistenceError

logger = get_logger(__name__)

# Returned by store_with_admission() instead of writing when limits are exceeded
CLEANUP_NEEDED = "cleanup_needed"

LimitReason = Literal["count", "size"]

BLOB_SCHEMA = """
CREATE TABLE IF NOT EXISTS blobs (
    id TEXT PRIMARY KEY,
    data BLOB NOT NULL
);

CREATE TABLE IF NOT EXISTS meta (
    id TEXT PRIMARY KEY,
    size INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    last_accessed_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_meta_last_accessed_at ON meta(last_accessed_at);
CREATE INDEX IF NOT EXISTS idx_meta_created_at ON meta(created_at);
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_mb(size_bytes: int) -> float:
    """Bytes to MiB rounded to one decimal, as shown to users."""
    return round(size_bytes / 1024 / 1024, 1)


@dataclass(frozen=True)
class StorageLimits:
    """Capacity ceilings of the blob cache."""

    max_images: int = DEFAULT_MAX_IMAGES
    max_storage_mb: int = DEFAULT_MAX_STORAGE_MB
    warning_threshold_percent: int = DEFAULT_WARNING_THRESHOLD_PERCENT

    def __post_init__(self) -> None:
        if self.max_images <= 0:
            raise ConfigurationError(f"max_images must be positive, got {self.max_images}.")
        if self.max_storage_mb <= 0:
            raise ConfigurationError(
                f"max_storage_mb must be positive, got {self.max_storage_mb}."
            )
        if not 0 < self.warning_threshold_percent <= 100:
            raise ConfigurationError(
                "warning_threshold_percent must be between 1 and 100, "
                f"got {self.warning_threshold_percent}."
            )

    @property
    def max_storage_bytes(self) -> int:
        return self.max_storage_mb * 1024 * 1024

    @classmethod
    def from_config(cls, config: Config) -> "StorageLimits":
        return cls(
            max_images=config.max_images,
            max_storage_mb=config.max_storage_mb,
            warning_threshold_percent=config.warning_threshold_percent,
        )


@dataclass(frozen=True)
class BlobRecord:
    """Metadata row of one cached blob."""

    id: str
    size: int
    created_at: int
    last_accessed_at: int


@dataclass(frozen=True)
class LimitCheck:
    """Admission verdict for a prospective insert."""

    needs_cleanup: bool
    reason: LimitReason | None
    current_count: int
    current_size_bytes: int

    @property
    def current_size_mb(self) -> float:
        return _to_mb(self.current_size_bytes)


@dataclass(frozen=True)
class EvictionResult:
    """Outcome of evict_until_fits: what was removed (oldest first) and whether room was made."""

    evicted_ids: tuple[str, ...]
    fits: bool


@dataclass(frozen=True)
class StorageStats:
    """Usage summary for display."""

    count: int
    total_bytes: int
    max_images: int
    max_storage_bytes: int
    is_near_limit: bool

    @property
    def total_size_mb(self) -> float:
        return _to_mb(self.total_bytes)

    @property
    def max_storage_mb(self) -> float:
        return _to_mb(self.max_storage_bytes)


def _usage(conn: sqlite3.Connection) -> tuple[int, int]:
    row = conn.execute("SELECT COUNT(*) AS n, COALESCE(SUM(size), 0) AS total FROM meta").fetchone()
    return int(row["n"]), int(row["total"])


def _remove(conn: sqlite3.Connection, ids: Iterable[str]) -> None:
    params = [(blob_id,) for blob_id in ids]
    conn.executemany("DELETE FROM blobs WHERE id = ?", params)
    conn.executemany("DELETE FROM meta WHERE id = ?", params)


class BlobCache:
    """Count- and size-bounded LRU store for image bytes."""

    def __init__(
        self,
        db_path: str | Path = MEMORY_PATH,
        limits: StorageLimits | None = None,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        """
        Args:
            db_path: SQLite file for blobs and metadata (":memory:" for a throwaway cache)
            limits: Capacity ceilings (defaults: 500 images, 4096 MiB, warn at 80%)
            clock: Millisecond timestamp source
        """
        self._db = SQLiteConnection(db_path, BLOB_SCHEMA)
        self.limits = limits or StorageLimits()
        self._clock = clock

    @classmethod
    def from_config(cls, config: Config) -> "BlobCache":
        return cls(config.blob_db_path, StorageLimits.from_config(config))

    async def open(self) -> None:
        """
        Open the underlying database.

        Raises:
            PersistenceError: If the database cannot be opened
        """
        await self._db.open()

    async def close(self) -> None:
        await self._db.close()

    def _exceeds(self, count: int, total: int, candidate_size: int) -> LimitReason | None:
        if count >= self.limits.max_images:
            return "count"
        if total + candidate_size > self.limits.max_storage_bytes:
            return "size"
        return None

    async def check_limit(self, candidate_size: int) -> LimitCheck | None:
        """
        Decide whether a blob of candidate_size bytes fits without cleanup.

        Count is checked before size. Returns None if usage cannot be read.
        """
        try:
            count, total = await self._db.run(_usage)
        except PersistenceError as e:
            logger.error("Failed to read blob usage: %s", e)
            return None
        reason = self._exceeds(count, total, candidate_size)
        logger.debug(
            "Admission check size=%d count=%d total=%d reason=%s",
            candidate_size,
            count,
            total,
            reason,
        )
        return LimitCheck(
            needs_cleanup=reason is not None,
            reason=reason,
            current_count=count,
            current_size_bytes=total,
        )

    async def store(self, blob_id: str, data: bytes) -> str | None:
        """
        Write blob and metadata unconditionally (admission must already be approved).

        Returns:
            blob_id on success, None on I/O failure
        """
        now = self._clock()

        def write(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT OR REPLACE INTO blobs (id, data) VALUES (?, ?)",
                (blob_id, sqlite3.Binary(data)),
            )
            conn.execute(
                "INSERT OR REPLACE INTO meta (id, size, created_at, last_accessed_at) "
                "VALUES (?, ?, ?, ?)",
                (blob_id, len(data), now, now),
            )

        try:
            await self._db.run(write, key=blob_id)
        except PersistenceError as e:
            logger.error("Failed to store blob %s: %s", blob_id, e)
            return None
        logger.debug("Stored blob %s size=%d", blob_id, len(data))
        return blob_id

    async def store_with_admission(self, blob_id: str, data: bytes) -> str | None:
        """
        Store only if the limits allow it.

        Returns:
            blob_id if stored, CLEANUP_NEEDED if the caller must confirm a cleanup
            first, None on I/O failure
        """
        check = await self.check_limit(len(data))
        if check is None:
            return None
        if check.needs_cleanup:
            return CLEANUP_NEEDED
        return await self.store(blob_id, data)

    async def evict_until_fits(self, candidate_size: int) -> EvictionResult:
        """
        Remove least recently accessed blobs until a candidate_size insert fits.

        Each removal deletes blob and metadata in one transaction. Stops when both
        ceilings are satisfied or the cache is empty; fits=False means no room
        could be made (candidate larger than the byte ceiling, or an I/O failure).
        """
        evicted: list[str] = []

        def step(conn: sqlite3.Connection) -> tuple[bool, str | None]:
            count, total = _usage(conn)
            if self._exceeds(count, total, candidate_size) is None:
                return True, None
            row = conn.execute(
                "SELECT id FROM meta ORDER BY last_accessed_at ASC, created_at ASC, id ASC LIMIT 1"
            ).fetchone()
            if row is None:
                return False, None
            _remove(conn, [row["id"]])
            return False, row["id"]

        while True:
            try:
                fits, removed = await self._db.run(step)
            except PersistenceError as e:
                logger.error("Eviction stopped after %d blobs: %s", len(evicted), e)
                return EvictionResult(tuple(evicted), fits=False)
            if fits:
                break
            if removed is None:
                logger.warning(
                    "Cache empty but a %d byte blob still does not fit", candidate_size
                )
                return EvictionResult(tuple(evicted), fits=False)
            evicted.append(removed)
            logger.info("Evicted oldest blob %s", removed)

        if evicted:
            logger.info("Eviction freed %d blobs for size=%d", len(evicted), candidate_size)
        return EvictionResult(tuple(evicted), fits=True)

    async def get(self, blob_id: str) -> bytes | None:
        """
        Return the blob bytes, or None if absent. Bumps last_accessed_at as a side effect.

        The access time never moves backwards, even if the clock does.
        """
        now = self._clock()

        def read(conn: sqlite3.Connection) -> bytes | None:
            row = conn.execute("SELECT data FROM blobs WHERE id = ?", (blob_id,)).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE meta SET last_accessed_at = MAX(last_accessed_at, ?) WHERE id = ?",
                (now, blob_id),
            )
            return bytes(row["data"])

        try:
            return await self._db.run(read, key=blob_id)
        except PersistenceError as e:
            logger.error("Failed to read blob %s: %s", blob_id, e)
            return None

    async def contains(self, blob_id: str) -> bool | None:
        """True if the blob is stored, False if it is not, None if that cannot be read."""

        def read(conn: sqlite3.Connection) -> bool:
            row = conn.execute("SELECT 1 FROM blobs WHERE id = ?", (blob_id,)).fetchone()
            return row is not None

        try:
            return await self._db.run(read, key=blob_id)
        except PersistenceError as e:
            logger.error("Failed to look up blob %s: %s", blob_id, e)
            return None

    async def get_record(self, blob_id: str) -> BlobRecord | None:
        """Metadata of one blob without touching its access time."""

        def read(conn: sqlite3.Connection) -> BlobRecord | None:
            row = conn.execute(
                "SELECT id, size, created_at, last_accessed_at FROM meta WHERE id = ?",
                (blob_id,),
            ).fetchone()
            return BlobRecord(**dict(row)) if row else None

        try:
            return await self._db.run(read, key=blob_id)
        except PersistenceError as e:
            logger.error("Failed to read blob metadata %s: %s", blob_id, e)
            return None

    async def records(self) -> list[BlobRecord]:
        """All metadata rows, least recently accessed first."""

        def read(conn: sqlite3.Connection) -> list[BlobRecord]:
            rows = conn.execute(
                "SELECT id, size, created_at, last_accessed_at FROM meta "
                "ORDER BY last_accessed_at ASC, created_at ASC, id ASC"
            ).fetchall()
            return [BlobRecord(**dict(row)) for row in rows]

        try:
            return await self._db.run(read)
        except PersistenceError as e:
            logger.error("Failed to list blobs: %s", e)
            return []

    async def delete(self, blob_id: str) -> bool:
        """Remove one blob and its metadata. Unknown ids are a no-op. False on I/O failure."""
        try:
            await self._db.run(lambda conn: _remove(conn, [blob_id]), key=blob_id)
        except PersistenceError as e:
            logger.error("Failed to delete blob %s: %s", blob_id, e)
            return False
        logger.debug("Deleted blob %s", blob_id)
        return True

    async def delete_many(self, blob_ids: Iterable[str]) -> bool:
        """Remove several blobs in a single transaction (all or nothing)."""
        ids = list(dict.fromkeys(blob_ids))
        if not ids:
            return True
        try:
            await self._db.run(lambda conn: _remove(conn, ids))
        except PersistenceError as e:
            logger.error("Failed to delete %d blobs: %s", len(ids), e)
            return False
        logger.debug("Deleted %d blobs", len(ids))
        return True

    async def stats(self) -> StorageStats | None:
        """Usage summary; is_near_limit when either ceiling reaches the warning threshold."""
        try:
            count, total = await self._db.run(_usage)
        except PersistenceError as e:
            logger.error("Failed to read blob usage: %s", e)
            return None
        threshold = self.limits.warning_threshold_percent
        count_percent = count / self.limits.max_images * 100
        size_percent = total / self.limits.max_storage_bytes * 100
        return StorageStats(
            count=count,
            total_bytes=total,
            max_images=self.limits.max_images,
            max_storage_bytes=self.limits.max_storage_bytes,
            is_near_limit=count_percent >= threshold or size_percent >= threshold,
        )

    async def clear(self) -> bool:
        """Empty both the blob and metadata tables."""

        def wipe(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM blobs")
            conn.execute("DELETE FROM meta")

        try:
            await self._db.run(wipe)
        except PersistenceError as e:
            logger.error("Failed to clear blob cache: %s", e)
            return False
        logger.info("Cleared blob cache")
        return True


__all__ = [
    "BlobCache",
    "BlobRecord",
    "CLEANUP_NEEDED",
    "EvictionResult",
    "LimitCheck",
    "LimitReason",
    "StorageLimits",
    "StorageStats",
]
