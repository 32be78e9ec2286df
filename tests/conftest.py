"""
Pytest configuration: default runs most tests; use --run-slow to include slow tests.
"""

import io

import pytest
from PIL import Image

from zenith import set_config
from zenith.core.config import Config


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (large caches, real network fetches). Default: skip them.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-slow", False):
        return
    skip_slow = pytest.mark.skip(reason="Slow test; run with --run-slow to include")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def make_image_bytes(fmt: str = "PNG", size: tuple[int, int] = (4, 3)) -> bytes:
    """Encode a small solid image in the given format."""
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Keep every test away from ~/.zenith and any developer .env values."""
    for name in (
        "ZENITH_MAX_IMAGES",
        "ZENITH_MAX_STORAGE_MB",
        "ZENITH_WARNING_THRESHOLD_PERCENT",
        "ZENITH_FETCH_TIMEOUT",
        "ZENITH_API_URL",
        "ZENITH_VERBOSITY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ZENITH_DATA_DIR", str(tmp_path / "data"))
    set_config(Config(data_dir=tmp_path / "data"))
    yield
