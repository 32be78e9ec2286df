"""
"Download all": bundle every generated image into a zip archive.

Used before a destructive cleanup so the user keeps a copy of whatever the
eviction may remove. Images are converted to PNG; if conversion fails the
original bytes are stored under their own extension.
"""

import asyncio
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from zenith.core.config import Config
from zenith.core.fetch import fetch_image_bytes
from zenith.core.imaging import infer_format_from_magic, normalize_format, to_png
from zenith.core.models import ImageNode
from zenith.logging_config import get_logger
from zenith.storage.blob_cache import BlobCache
from zenith.utils.exceptions import ImageProcessingError, PersistenceError, ZenithError

logger = get_logger(__name__)

ZIP_FOLDER = "images"


@dataclass
class ExportReport:
    """What ended up in the archive."""

    path: Path
    written: list[str] = field(default_factory=list)  # image node ids
    failed: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


def export_filename(image: ImageNode, ext: str = "png") -> str:
    return f"zenith-{image.config_id}-{image.id}-seed{image.seed}.{ext}"


async def _image_bytes(cache: BlobCache, image: ImageNode, config: Config) -> bytes | None:
    if image.blob_id:
        data = await cache.get(image.blob_id)
        if data is not None:
            return data
    if image.image_url:
        return await asyncio.to_thread(fetch_image_bytes, image.image_url, config)
    return None


async def export_images_zip(
    cache: BlobCache,
    images: Iterable[ImageNode],
    dest: Path,
    config: Config,
) -> ExportReport:
    """
    Write every ready image to a zip at dest (under an images/ folder).

    Images without cached bytes are fetched from their inline URL. Failures are
    recorded per image and do not stop the export.
    """
    report = ExportReport(path=dest)
    entries: list[tuple[str, bytes]] = []

    for image in images:
        if not image.is_ready:
            continue
        try:
            data = await _image_bytes(cache, image, config)
        except ZenithError as e:
            logger.warning("Skipping %s in export: %s", image.id, e)
            report.failed.append(image.id)
            continue
        if data is None:
            report.failed.append(image.id)
            continue
        try:
            entries.append((export_filename(image), to_png(data, name=image.id)))
        except ImageProcessingError as e:
            logger.warning("Exporting %s without PNG conversion: %s", image.id, e)
            fmt = normalize_format(infer_format_from_magic(data)) or "bin"
            ext = {"JPEG": "jpg"}.get(fmt, fmt.lower())
            entries.append((export_filename(image, ext), data))
        report.written.append(image.id)

    def write_zip() -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, payload in entries:
                zf.writestr(f"{ZIP_FOLDER}/{name}", payload)

    try:
        await asyncio.to_thread(write_zip)
    except OSError as e:
        raise PersistenceError(f"Cannot write archive {dest}: {e}", original_error=e) from e
    logger.info(
        "Exported %d images to %s (%d failed)", len(report.written), dest, len(report.failed)
    )
    return report


__all__ = ["ExportReport", "export_filename", "export_images_zip"]
