"""Unit tests for FlowSession: result ingestion, cascading purge and cleanup flows."""

import asyncio
import base64
import zipfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar
from unittest.mock import AsyncMock, patch

import pytest

from zenith.core.config import Config
from zenith.core.governor import StoreStatus
from zenith.core.models import GenerationResult, PreviewInput
from zenith.core.session import FlowSession
from zenith.utils.exceptions import ConfigurationError, NetworkError, PersistenceError

T = TypeVar("T")


def _data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


def _run(
    body: Callable[[FlowSession], Awaitable[T]],
    config: Config | None = None,
) -> T:
    async def run() -> T:
        async with FlowSession.in_memory(config) as session:
            return await body(session)

    return asyncio.run(run())


async def _add(session: FlowSession, batch: int = 3) -> str:
    draft = PreviewInput(prompt="harbor at dusk", width=64, height=64, batch_count=batch, seed=1)
    await session.graph.set_preview(draft)
    config_id = await session.graph.confirm_preview()
    assert config_id is not None
    return config_id


@pytest.mark.unit
class TestRecordResult:
    def test_data_url_is_cached_and_dropped_from_node(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await _add(session, batch=1)
            outcome = await session.record_result(
                "image-2", GenerationResult(url=_data_url(png_bytes), duration_label="4.1s")
            )
            return outcome, session.graph.get_image("image-2"), await session.load_image("image-2")

        outcome, node, data = _run(body)
        assert outcome.status is StoreStatus.STORED
        assert outcome.blob_id == "image-2"
        assert node.is_ready
        assert node.blob_id == "image-2"
        assert node.image_url is None
        assert node.duration == "4.1s"
        assert data == png_bytes

    def test_http_url_is_kept(self, png_bytes: bytes) -> None:
        url = "https://cdn.example.com/out/1.png"

        async def body(session: FlowSession):
            await _add(session, batch=1)
            with patch("zenith.core.session.fetch_image_bytes", return_value=png_bytes) as fetch:
                outcome = await session.record_result("image-2", GenerationResult(url=url))
            fetch.assert_called_once_with(url, session.config)
            return outcome, session.graph.get_image("image-2")

        outcome, node = _run(body)
        assert outcome.status is StoreStatus.STORED
        assert node.image_url == url
        assert node.blob_id == "image-2"

    def test_fetch_failure_leaves_url_only(self) -> None:
        url = "https://cdn.example.com/gone.png"

        async def body(session: FlowSession):
            await _add(session, batch=1)
            with patch(
                "zenith.core.session.fetch_image_bytes",
                side_effect=NetworkError("unreachable"),
            ):
                outcome = await session.record_result("image-2", GenerationResult(url=url))
            return outcome, session.graph.get_image("image-2"), await session.storage_stats()

        outcome, node, stats = _run(body)
        assert outcome.status is StoreStatus.FAILED
        assert outcome.error == "unreachable"
        assert node.is_ready
        assert node.image_url == url
        assert node.blob_id is None
        assert stats.count == 0

    def test_unreadable_bytes_are_not_cached(self) -> None:
        async def body(session: FlowSession):
            await _add(session, batch=1)
            outcome = await session.record_result(
                "image-2", GenerationResult(url=_data_url(b"definitely not an image"))
            )
            return outcome, session.graph.get_image("image-2")

        outcome, node = _run(body)
        assert outcome.status is StoreStatus.FAILED
        assert node.blob_id is None
        assert node.image_url.startswith("data:image/png")

    def test_unknown_image(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            result = GenerationResult(url=_data_url(png_bytes))
            return await session.record_result("image-9", result)

        assert _run(body) is None

    def test_record_failure(self) -> None:
        async def body(session: FlowSession):
            await _add(session, batch=1)
            await session.record_failure("image-2", "content policy")
            return session.graph.get_image("image-2")

        node = _run(body)
        assert node.error == "content policy"
        assert not node.is_loading


@pytest.mark.unit
class TestDeleteConfig:
    def test_purges_blobs_of_deleted_config_only(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            first = await _add(session, batch=2)
            await _add(session, batch=1)  # config-4 / image-5
            for image_id in ("image-2", "image-3", "image-5"):
                await session.record_result(image_id, GenerationResult(url=_data_url(png_bytes)))
            report = await session.delete_config(first)
            return report, [r.id for r in await session.cache.records()]

        report, remaining = _run(body)
        assert report.ok
        assert sorted(report.requested) == ["image-2", "image-3"]
        assert remaining == ["image-5"]

    def test_unknown_config(self) -> None:
        async def body(session: FlowSession):
            await _add(session)
            return await session.delete_config("config-404"), len(session.graph.state.image_nodes)

        report, count = _run(body)
        assert report.requested == ()
        assert count == 3

    def test_failed_purge_is_tracked_and_retried(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            config_id = await _add(session, batch=2)
            for image_id in ("image-2", "image-3"):
                await session.record_result(image_id, GenerationResult(url=_data_url(png_bytes)))

            real_delete = session.cache.delete

            async def flaky_delete(blob_id: str) -> bool:
                if blob_id == "image-3":
                    return False
                return await real_delete(blob_id)

            with (
                patch.object(session.cache, "delete_many", AsyncMock(return_value=False)),
                patch.object(session.cache, "delete", side_effect=flaky_delete),
            ):
                report = await session.delete_config(config_id)
            pending = session.failed_purges
            retried = await session.retry_failed_purges()
            return report, pending, retried, session.failed_purges, await session.cache.stats()

        report, pending, retried, after, stats = _run(body)
        assert report.failed == ("image-3",)
        assert pending == frozenset({"image-3"})
        assert retried.ok
        assert after == frozenset()
        assert stats.count == 0


@pytest.mark.unit
class TestCleanupFlow:
    @staticmethod
    async def _fill_and_overflow(session: FlowSession, png: bytes):
        await _add(session, batch=3)
        for image_id in ("image-2", "image-3"):
            await session.record_result(image_id, GenerationResult(url=_data_url(png)))
        await session.cache.get("image-3")  # image-2 is now least recently used
        return await session.record_result("image-4", GenerationResult(url=_data_url(png)))

    def test_overflow_parks_and_keeps_url(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            outcome = await self._fill_and_overflow(session, png_bytes)
            return outcome, session.cleanup_request, session.graph.get_image("image-4")

        outcome, request, node = _run(body, Config(max_images=2))
        assert outcome.status is StoreStatus.CLEANUP_NEEDED
        assert request.reason == "count"
        assert request.pending.blob_id == "image-4"
        assert node.is_ready
        assert node.blob_id is None
        assert node.image_url.startswith("data:")

    def test_confirm_evicts_and_detaches(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await self._fill_and_overflow(session, png_bytes)
            outcome = await session.confirm_cleanup()
            return outcome, session.graph.state.image_nodes, session.cleanup_request

        outcome, nodes, request = _run(body, Config(max_images=2))
        assert outcome.status is StoreStatus.STORED
        assert outcome.evicted_ids == ("image-2",)
        assert nodes["image-2"].blob_id is None
        assert nodes["image-3"].blob_id == "image-3"
        assert nodes["image-4"].blob_id == "image-4"
        assert nodes["image-4"].image_url is None
        assert request is None

    def test_cancel_keeps_cache(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await self._fill_and_overflow(session, png_bytes)
            session.cancel_cleanup()
            return session.cleanup_request, [r.id for r in await session.cache.records()]

        request, remaining = _run(body, Config(max_images=2))
        assert request is None
        assert sorted(remaining) == ["image-2", "image-3"]

    def test_deleting_parked_image_cancels_request(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await self._fill_and_overflow(session, png_bytes)
            await session.delete_config("config-1")
            return session.cleanup_request, await session.confirm_cleanup()

        request, outcome = _run(body, Config(max_images=2))
        assert request is None
        assert outcome is None

    def test_download_all_then_retry(self, png_bytes: bytes, tmp_path: Path) -> None:
        dest = tmp_path / "all.zip"

        async def body(session: FlowSession):
            await self._fill_and_overflow(session, png_bytes)
            return await session.download_all_then_retry(dest), session.cleanup_request

        (report, outcome), request = _run(body, Config(max_images=2))
        assert report.complete
        assert sorted(report.written) == ["image-2", "image-3", "image-4"]
        with zipfile.ZipFile(dest) as zf:
            names = sorted(zf.namelist())
        assert len(names) == 3
        assert all(name.startswith("images/") and name.endswith(".png") for name in names)
        # Exporting does not free room; the decision is still pending
        assert outcome.status is StoreStatus.CLEANUP_NEEDED
        assert request is not None


@pytest.mark.unit
class TestSessionMisc:
    def test_load_image_detaches_missing_blob(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await _add(session, batch=1)
            await session.record_result("image-2", GenerationResult(url=_data_url(png_bytes)))
            await session.cache.delete("image-2")
            return await session.load_image("image-2"), session.graph.get_image("image-2")

        data, node = _run(body)
        assert data is None
        assert node.blob_id is None

    def test_in_memory_rejects_zero_max_images(self) -> None:
        with pytest.raises(ConfigurationError, match="max_images"):
            FlowSession.in_memory(Config(max_images=0))

    def test_clear_all(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await _add(session, batch=1)
            await session.record_result("image-2", GenerationResult(url=_data_url(png_bytes)))
            cleared = await session.clear_all()
            return cleared, session.graph.state, await session.storage_stats()

        cleared, state, stats = _run(body)
        assert cleared is True
        assert len(state.image_nodes) == 0
        assert state.next_id_counter == 0
        assert stats.count == 0

    def test_durable_session_survives_reopen(self, png_bytes: bytes, tmp_path: Path) -> None:
        config = Config(data_dir=tmp_path / "zenith")

        async def write() -> None:
            async with FlowSession.from_config(config) as session:
                await _add(session, batch=1)
                await session.record_result("image-2", GenerationResult(url=_data_url(png_bytes)))

        async def read():
            async with FlowSession.from_config(config) as session:
                return session.graph.get_image("image-2"), await session.load_image("image-2")

        asyncio.run(write())
        node, data = asyncio.run(read())
        assert config.graph_db_path.exists()
        assert config.blob_db_path.exists()
        assert node.blob_id == "image-2"
        assert data == png_bytes


@pytest.mark.unit
class TestReadFailures:
    def test_failed_read_keeps_blob_reference_for_purge(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            config_id = await _add(session, batch=1)
            await session.record_result("image-2", GenerationResult(url=_data_url(png_bytes)))

            real_run = session.cache._db.run
            failures = iter([PersistenceError("transient")])

            async def flaky_run(fn, *, key=""):
                error = next(failures, None)
                if error is not None:
                    raise error
                return await real_run(fn, key=key)

            with patch.object(session.cache._db, "run", side_effect=flaky_run):
                data = await session.load_image("image-2")
            node = session.graph.get_image("image-2")
            report = await session.delete_config(config_id)
            return data, node, report, await session.cache.stats()

        data, node, report, stats = _run(body)
        assert data is None
        assert node.blob_id == "image-2"
        assert report.requested == ("image-2",)
        assert report.ok
        assert stats.count == 0


@pytest.mark.unit
class TestClearAllFailure:
    @staticmethod
    async def _clear_with_failing_cache(session: FlowSession, png: bytes) -> bool:
        await _add(session, batch=2)
        for image_id in ("image-2", "image-3"):
            await session.record_result(image_id, GenerationResult(url=_data_url(png)))
        with patch.object(session.cache, "clear", AsyncMock(return_value=False)):
            return await session.clear_all()

    def test_surviving_blobs_are_kept_for_retry(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            cleared = await self._clear_with_failing_cache(session, png_bytes)
            pending = session.failed_purges
            retried = await session.retry_failed_purges()
            return cleared, pending, retried, session.failed_purges, await session.cache.stats()

        cleared, pending, retried, after, stats = _run(body)
        assert cleared is False
        assert pending == frozenset({"image-2", "image-3"})
        assert retried.ok
        assert after == frozenset()
        assert stats.count == 0

    def test_reused_id_is_not_purged_on_retry(self, png_bytes: bytes) -> None:
        async def body(session: FlowSession):
            await self._clear_with_failing_cache(session, png_bytes)
            await _add(session, batch=1)  # counter restarted; image-2 again
            await session.record_result("image-2", GenerationResult(url=_data_url(png_bytes)))
            pending = session.failed_purges
            await session.retry_failed_purges()
            return pending, await session.load_image("image-2")

        pending, data = _run(body)
        assert pending == frozenset({"image-3"})
        assert data == png_bytes
