"""
Flow session: one graph store, one blob cache, and the governor between them.

The session is the only place where the two stores are changed together.
Commands that touch both await both: deleting a configuration commits the
graph and then purges its blobs, reporting any blob that could not be
removed (and keeping it for retry_failed_purges) instead of firing and
forgetting. Graph-only commands are called on ``session.graph`` directly.

A cached image uses its image node id as blob id.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from zenith.core.config import Config, get_config
from zenith.core.export import ExportReport, export_images_zip
from zenith.core.fetch import fetch_image_bytes
from zenith.core.governor import (
    CleanupRequest,
    StorageGovernor,
    StoreOutcome,
    StoreStatus,
)
from zenith.core.graph import GraphStore
from zenith.core.imaging import probe_image
from zenith.core.models import GenerationResult
from zenith.logging_config import get_logger
from zenith.storage.blob_cache import BlobCache, StorageLimits, StorageStats
from zenith.storage.memory import MemoryKeyValueStore
from zenith.storage.sqlite import SQLiteKeyValueStore
from zenith.utils.exceptions import ZenithError

logger = get_logger(__name__)


@dataclass(frozen=True)
class PurgeReport:
    """Blob ids a purge was asked to remove, and those that could not be removed."""

    requested: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class ResultOutcome:
    """What happened to one image's bytes after its result arrived."""

    image_id: str
    status: StoreStatus
    blob_id: str | None = None
    error: str | None = None
    evicted_ids: tuple[str, ...] = ()


class FlowSession:
    """Owns the graph store, the blob cache and the storage governor for one user session."""

    def __init__(self, graph: GraphStore, cache: BlobCache, config: Config | None = None) -> None:
        self.graph = graph
        self.cache = cache
        self.config = config or get_config()
        self.governor = StorageGovernor(cache)
        self._failed_purges: set[str] = set()

    @classmethod
    def from_config(cls, config: Config) -> "FlowSession":
        """Durable session with both databases under config.data_dir."""
        config.ensure_data_dir()
        graph = GraphStore(SQLiteKeyValueStore(config.graph_db_path))
        return cls(graph, BlobCache.from_config(config), config)

    @classmethod
    def in_memory(cls, config: Config | None = None) -> "FlowSession":
        """Throwaway session; nothing outlives the process."""
        config = config or Config()
        cache = BlobCache(limits=StorageLimits.from_config(config))
        return cls(GraphStore(MemoryKeyValueStore()), cache, config)

    async def open(self) -> None:
        """
        Open both stores and hydrate the graph.

        A graph that cannot be loaded is logged and starts empty.

        Raises:
            PersistenceError: If the blob database cannot be opened
        """
        await self.cache.open()
        await self.graph.open()

    async def close(self) -> None:
        await self.graph.close()
        await self.cache.close()

    async def __aenter__(self) -> "FlowSession":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # Deletion

    @property
    def failed_purges(self) -> frozenset[str]:
        """Blob ids whose removal failed and is still outstanding."""
        return frozenset(self._failed_purges)

    async def purge_blobs(self, blob_ids: list[str]) -> PurgeReport:
        """
        Remove blobs, all in one transaction when possible.

        If the batch delete fails each id is retried on its own; ids that still
        fail are logged, reported, and remembered for retry_failed_purges().
        """
        ids = tuple(dict.fromkeys(blob_ids))
        if not ids:
            return PurgeReport()
        if await self.cache.delete_many(ids):
            self._failed_purges.difference_update(ids)
            return PurgeReport(requested=ids)

        failed = []
        for blob_id in ids:
            if await self.cache.delete(blob_id):
                self._failed_purges.discard(blob_id)
            else:
                logger.error("Blob %s could not be purged", blob_id)
                failed.append(blob_id)
        self._failed_purges.update(failed)
        return PurgeReport(requested=ids, failed=tuple(failed))

    async def retry_failed_purges(self) -> PurgeReport:
        return await self.purge_blobs(sorted(self._failed_purges))

    async def delete_config(self, config_id: str) -> PurgeReport:
        """Delete a configuration, its image nodes, and their blobs."""
        blob_ids = await self.graph.delete_config(config_id)
        self._drop_orphaned_pending()
        return await self.purge_blobs(blob_ids)

    async def clear_all(self) -> bool:
        """
        Empty the graph and the whole blob cache.

        Returns False if the cache could not be cleared; the surviving blobs are
        then kept for retry_failed_purges().
        """
        referenced = {n.blob_id for n in self.graph.state.image_nodes.values() if n.blob_id}
        await self.graph.clear_all()
        self.governor.cancel()
        if await self.cache.clear():
            self._failed_purges.clear()
            return True
        survivors = referenced | {r.id for r in await self.cache.records()}
        logger.error("Blob cache not cleared; %d blobs kept for retry", len(survivors))
        self._failed_purges.update(survivors)
        return False

    def _drop_orphaned_pending(self) -> None:
        request = self.governor.cleanup_request
        if request is not None and self.graph.get_image(request.pending.blob_id) is None:
            self.governor.cancel()

    # Results

    async def record_result(
        self, image_id: str, result: GenerationResult
    ) -> ResultOutcome | None:
        """
        Fetch a finished image's bytes and store them through the governor.

        The image node becomes ready in every case; it only gets a blob id when
        the bytes were stored. Returns None if the image node no longer exists.
        """
        if self.graph.get_image(image_id) is None:
            logger.debug("Result for unknown image %s ignored", image_id)
            return None

        try:
            data = await asyncio.to_thread(fetch_image_bytes, result.url, self.config)
            info = probe_image(data, name=image_id)
        except ZenithError as e:
            logger.warning("Could not fetch bytes for %s: %s", image_id, e)
            await self.graph.mark_image_ready(image_id, result.url, result.duration_label)
            return ResultOutcome(image_id, StoreStatus.FAILED, error=str(e))

        if self.graph.get_image(image_id) is None:
            # Deleted while the download was in flight
            return None
        logger.debug(
            "Fetched %s format=%s size=%dx%d bytes=%d",
            image_id,
            info.format,
            info.width,
            info.height,
            len(data),
        )

        outcome = await self.governor.request_store(image_id, data)
        if outcome.stored and outcome.blob_id is not None:
            if self.graph.get_image(image_id) is None:
                await self.purge_blobs([outcome.blob_id])
                return None
            # A live blob under this id is no longer a purge candidate
            self._failed_purges.discard(outcome.blob_id)
            await self.graph.mark_image_ready(
                image_id, _kept_url(result.url), result.duration_label, outcome.blob_id
            )
        else:
            await self.graph.mark_image_ready(image_id, result.url, result.duration_label)
        return ResultOutcome(image_id, outcome.status, blob_id=outcome.blob_id)

    async def record_failure(self, image_id: str, message: str) -> None:
        await self.graph.mark_image_failed(image_id, message)

    async def load_image(self, image_id: str) -> bytes | None:
        """Cached bytes of an image (refreshing its LRU position), or None."""
        node = self.graph.get_image(image_id)
        if node is None or node.blob_id is None:
            return None
        data = await self.cache.get(node.blob_id)
        if data is not None:
            return data
        # Detach only when the blob is known to be gone, not on a failed read
        if await self.cache.contains(node.blob_id) is False:
            logger.warning("Blob %s of %s is missing; detaching", node.blob_id, image_id)
            await self.graph.detach_blobs([node.blob_id])
        return None

    # Storage limit protocol

    @property
    def cleanup_request(self) -> CleanupRequest | None:
        return self.governor.cleanup_request

    async def confirm_cleanup(self) -> ResultOutcome | None:
        """Evict least recently used blobs and store the parked image."""
        request = self.governor.cleanup_request
        if request is None:
            return None
        self._drop_orphaned_pending()
        if self.governor.cleanup_request is None:
            return ResultOutcome(request.pending.blob_id, StoreStatus.CANCELLED)
        return await self._apply(request, await self.governor.confirm_cleanup())

    async def retry_after_export(self) -> ResultOutcome | None:
        """Retry the parked image without evicting (after the user exported everything)."""
        request = self.governor.cleanup_request
        if request is None:
            return None
        self._drop_orphaned_pending()
        if self.governor.cleanup_request is None:
            return ResultOutcome(request.pending.blob_id, StoreStatus.CANCELLED)
        return await self._apply(request, await self.governor.retry_after_export())

    async def download_all_then_retry(
        self, dest: Path
    ) -> tuple[ExportReport, ResultOutcome | None]:
        """Export every image to dest; retry the parked store only if nothing failed."""
        report = await self.export_all(dest)
        if not report.complete:
            logger.warning("Export incomplete (%d failed); not retrying", len(report.failed))
            return report, None
        return report, await self.retry_after_export()

    def cancel_cleanup(self) -> None:
        self.governor.cancel()

    async def _apply(self, request: CleanupRequest, outcome: StoreOutcome) -> ResultOutcome:
        image_id = request.pending.blob_id
        if outcome.evicted_ids:
            await self.graph.detach_blobs(outcome.evicted_ids)
        if outcome.stored and outcome.blob_id is not None:
            node = self.graph.get_image(image_id)
            if node is None:
                # Deleted while eviction ran
                await self.purge_blobs([outcome.blob_id])
                return ResultOutcome(
                    image_id, StoreStatus.CANCELLED, evicted_ids=outcome.evicted_ids
                )
            self._failed_purges.discard(outcome.blob_id)
            await self.graph.mark_image_ready(
                image_id, _kept_url(node.image_url), node.duration, outcome.blob_id
            )
        return ResultOutcome(
            image_id, outcome.status, blob_id=outcome.blob_id, evicted_ids=outcome.evicted_ids
        )

    # Views

    async def storage_stats(self) -> StorageStats | None:
        return await self.cache.stats()

    async def export_all(self, dest: Path) -> ExportReport:
        """Zip every ready image (the "download all" path)."""
        images = list(self.graph.state.image_nodes.values())
        return await export_images_zip(self.cache, images, dest, self.config)


def _kept_url(url: str | None) -> str | None:
    """Inline data URLs are dropped once the bytes live in the blob cache."""
    if url is not None and url.startswith("data:"):
        return None
    return url


__all__ = ["FlowSession", "PurgeReport", "ResultOutcome"]
