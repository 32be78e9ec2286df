"""
Storage governor: puts the blob cache's destructive eviction behind user consent.

Eviction cannot be undone locally (the source image may no longer be
fetchable), so an insert that fails admission is parked instead of forcing
room. The governor then waits for one of three decisions:

    IDLE --admission denied--> CLEANUP_NEEDED(reason, snapshot, pending)
    CLEANUP_NEEDED --retry_after_export--> IDLE (stored) or CLEANUP_NEEDED (still full)
    CLEANUP_NEEDED --confirm_cleanup--> evict oldest, store pending --> IDLE
    CLEANUP_NEEDED --cancel--> pending dropped, cache untouched --> IDLE

Only one insert is parked at a time; a new denied insert replaces it.
"""

from dataclasses import dataclass
from enum import Enum

from zenith.logging_config import get_logger
from zenith.storage.blob_cache import BlobCache, LimitReason

logger = get_logger(__name__)


class GovernorPhase(str, Enum):
    IDLE = "idle"
    CLEANUP_NEEDED = "cleanup_needed"


class StoreStatus(str, Enum):
    STORED = "stored"
    CLEANUP_NEEDED = "cleanup_needed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingStore:
    """The insert that triggered a failed admission check."""

    blob_id: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class CleanupRequest:
    """What the user is asked to decide on: why the cache is full and what is waiting."""

    reason: LimitReason
    current_count: int
    current_size_bytes: int
    pending: PendingStore

    @property
    def current_size_mb(self) -> float:
        return round(self.current_size_bytes / 1024 / 1024, 1)


@dataclass(frozen=True)
class StoreOutcome:
    """Result of a governed store attempt."""

    status: StoreStatus
    blob_id: str | None = None
    evicted_ids: tuple[str, ...] = ()

    @property
    def stored(self) -> bool:
        return self.status is StoreStatus.STORED


class StorageGovernor:
    """Mediates between store attempts and the BlobCache's eviction."""

    def __init__(self, cache: BlobCache) -> None:
        self._cache = cache
        self._request: CleanupRequest | None = None

    @property
    def phase(self) -> GovernorPhase:
        return GovernorPhase.IDLE if self._request is None else GovernorPhase.CLEANUP_NEEDED

    @property
    def cleanup_request(self) -> CleanupRequest | None:
        """Pending decision, or None when idle."""
        return self._request

    async def request_store(self, blob_id: str, data: bytes) -> StoreOutcome:
        """Store if admitted; otherwise park the insert and move to CLEANUP_NEEDED."""
        check = await self._cache.check_limit(len(data))
        if check is None:
            return StoreOutcome(StoreStatus.FAILED)
        if check.reason is None:
            stored = await self._cache.store(blob_id, data)
            if stored is None:
                return StoreOutcome(StoreStatus.FAILED)
            return StoreOutcome(StoreStatus.STORED, blob_id=stored)

        if self._request is not None:
            logger.warning(
                "Replacing parked blob %s with %s", self._request.pending.blob_id, blob_id
            )
        self._request = CleanupRequest(
            reason=check.reason,
            current_count=check.current_count,
            current_size_bytes=check.current_size_bytes,
            pending=PendingStore(blob_id, data),
        )
        logger.warning(
            "Storage limit reached reason=%s count=%d size=%.1fMB; blob %s awaits cleanup",
            check.reason,
            check.current_count,
            check.current_size_mb,
            blob_id,
        )
        return StoreOutcome(StoreStatus.CLEANUP_NEEDED, blob_id=blob_id)

    async def retry_after_export(self) -> StoreOutcome:
        """
        Retry the parked insert without evicting, after the caller exported everything.

        Stays in CLEANUP_NEEDED (with a refreshed snapshot) if there is still no room.
        """
        request = self._request
        if request is None:
            logger.debug("retry_after_export called while idle")
            return StoreOutcome(StoreStatus.CANCELLED)
        self._request = None
        pending = request.pending
        outcome = await self.request_store(pending.blob_id, pending.data)
        if outcome.status is StoreStatus.FAILED:
            # Keep the insert parked so the user can still choose cleanup or cancel
            self._request = request
        return outcome

    async def confirm_cleanup(self) -> StoreOutcome:
        """Evict least recently used blobs until the parked insert fits, then store it."""
        request = self._request
        if request is None:
            logger.debug("confirm_cleanup called while idle")
            return StoreOutcome(StoreStatus.CANCELLED)
        pending = request.pending
        eviction = await self._cache.evict_until_fits(pending.size)
        self._request = None
        if not eviction.fits:
            logger.error(
                "Could not make room for blob %s size=%d", pending.blob_id, pending.size
            )
            return StoreOutcome(StoreStatus.FAILED, evicted_ids=eviction.evicted_ids)
        stored = await self._cache.store(pending.blob_id, pending.data)
        if stored is None:
            return StoreOutcome(StoreStatus.FAILED, evicted_ids=eviction.evicted_ids)
        return StoreOutcome(
            StoreStatus.STORED, blob_id=stored, evicted_ids=eviction.evicted_ids
        )

    def cancel(self) -> PendingStore | None:
        """Drop the parked insert and return to IDLE; returns what was dropped."""
        request, self._request = self._request, None
        if request is not None:
            logger.info("Cleanup cancelled; blob %s not stored", request.pending.blob_id)
            return request.pending
        return None


__all__ = [
    "CleanupRequest",
    "GovernorPhase",
    "PendingStore",
    "StorageGovernor",
    "StoreOutcome",
    "StoreStatus",
]
