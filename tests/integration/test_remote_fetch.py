"""
Integration tests for fetching real result images over HTTP.

These tests download from a live host. They are slow and depend on the network.
Run rarely and only when you need to verify the live fetch path.

To run:
  ZENITH_RUN_INTEGRATION_TESTS=1 ZENITH_INTEGRATION_IMAGE_URL=https://... \
    pytest -m integration --run-slow
  # optionally route through a running provider proxy:
  ZENITH_API_URL=http://localhost:3000 ...
"""

import asyncio
import os
from pathlib import Path

import pytest

from zenith.core.config import Config
from zenith.core.fetch import fetch_image_bytes
from zenith.core.governor import StoreStatus
from zenith.core.imaging import probe_image
from zenith.core.models import GenerationResult, PreviewInput
from zenith.core.session import FlowSession


def _integration_enabled() -> bool:
    return os.getenv("ZENITH_RUN_INTEGRATION_TESTS", "").strip() == "1"


def _image_url() -> str:
    return os.getenv("ZENITH_INTEGRATION_IMAGE_URL", "").strip()


@pytest.mark.integration
@pytest.mark.slow
class TestRemoteFetch:
    """Real HTTP downloads (requires opt-in env and a reachable image URL)."""

    @pytest.fixture(autouse=True)
    def _require_opt_in(self) -> None:
        if not _integration_enabled():
            pytest.skip(
                "Integration tests are disabled. "
                "Set ZENITH_RUN_INTEGRATION_TESTS=1 to run (slow, needs network)."
            )
        if not _image_url().startswith(("http://", "https://")):
            pytest.skip("ZENITH_INTEGRATION_IMAGE_URL not set to an http(s) image URL.")

    def test_fetch_returns_decodable_image(self) -> None:
        data = fetch_image_bytes(_image_url(), Config.from_env())

        info = probe_image(data)
        assert info.width > 0
        assert info.height > 0

    def test_result_is_cached_through_session(self, tmp_path: Path) -> None:
        config = Config.from_env()
        config.data_dir = tmp_path

        async def scenario():
            async with FlowSession.from_config(config) as session:
                draft = PreviewInput(prompt="remote", width=512, height=512, batch_count=1, seed=0)
                await session.graph.set_preview(draft)
                await session.graph.confirm_preview()
                outcome = await session.record_result(
                    "image-2", GenerationResult(url=_image_url())
                )
                return outcome, await session.load_image("image-2")

        outcome, data = asyncio.run(scenario())
        assert outcome.status is StoreStatus.STORED
        assert data
