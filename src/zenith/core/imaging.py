"""
Image byte handling for zenith.

This module recognizes image formats, decodes data URLs, probes dimensions,
and converts cached image bytes to PNG for export.
"""

import base64
import io
from dataclasses import dataclass

from PIL import Image

from zenith.logging_config import get_logger
from zenith.utils.exceptions import ImageProcessingError, ValidationError

logger = get_logger(__name__)

# Formats providers are known to return
SUPPORTED_FORMATS = {"PNG", "JPEG", "WEBP", "GIF"}

_EXTENSIONS = {"PNG": "png", "JPEG": "jpg", "WEBP": "webp", "GIF": "gif"}


@dataclass(frozen=True)
class ImageInfo:
    """Format and pixel size of an encoded image."""

    format: str
    width: int
    height: int

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.format, self.format.lower())


def infer_format_from_magic(data: bytes) -> str | None:
    """Infer image format from magic bytes. Returns format name (e.g. PNG, JPEG) or None."""
    if len(data) < 12:
        return None
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "PNG"
    if data[:2] == b"\xff\xd8":
        return "JPEG"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "WEBP"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "GIF"
    return None


def normalize_format(fmt: str | None) -> str | None:
    """Map a format name or MIME type to a SUPPORTED_FORMATS key (JPG -> JPEG)."""
    if not fmt:
        return None
    s = fmt.strip().lower()
    if s.startswith("image/"):
        s = s.split("/", 1)[1]
    u = s.split(";")[0].split("+")[0].strip().upper()
    if u == "JPG":
        return "JPEG"
    return u if u in SUPPORTED_FORMATS else None


def parse_data_url(data_url: str) -> tuple[bytes, str | None]:
    """
    Parse a data URL (data:image/xxx;base64,yyy) into raw bytes and format.

    Returns:
        (decoded_bytes, format from the MIME type e.g. 'PNG', or None)

    Raises:
        ValidationError: If the string is not a base64 data URL
    """
    data_url = data_url.strip()
    if not data_url.startswith("data:"):
        raise ValidationError("Not a data URL", field="url")
    idx = data_url.find(";base64,")
    if idx == -1:
        raise ValidationError("Data URL missing ;base64, part", field="url")
    try:
        payload = base64.b64decode(data_url[idx + 8 :], validate=True)
    except ValueError as e:
        raise ValidationError(f"Invalid base64 in data URL: {e}", field="url") from e
    return payload, normalize_format(data_url[5:idx])


def probe_image(data: bytes, name: str = "") -> ImageInfo:
    """
    Read format and dimensions without decoding the full image.

    Args:
        data: Encoded image bytes
        name: Identifier used in error messages (e.g. the image node id)

    Raises:
        ImageProcessingError: If the bytes are not a readable image
    """
    if not data:
        raise ImageProcessingError("Image data is empty", image_path=name)
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt = normalize_format(image.format) or (image.format or "PNG").upper()
            return ImageInfo(format=fmt, width=image.width, height=image.height)
    except (OSError, ValueError, EOFError, Image.DecompressionBombError) as e:
        raise ImageProcessingError(f"Failed to read image: {e}", image_path=name) from e


def to_png(data: bytes, name: str = "") -> bytes:
    """
    Re-encode image bytes as PNG. PNG input is returned unchanged.

    Raises:
        ImageProcessingError: If the bytes cannot be decoded
    """
    if infer_format_from_magic(data) == "PNG":
        return data
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                image = image.convert("RGBA")
            buf = io.BytesIO()
            image.save(buf, format="PNG")
    except (OSError, ValueError, EOFError, Image.DecompressionBombError) as e:
        raise ImageProcessingError(f"Failed to convert image to PNG: {e}", image_path=name) from e
    logger.debug("Converted %s to PNG bytes=%d", name or "image", buf.tell())
    return buf.getvalue()


__all__ = [
    "ImageInfo",
    "SUPPORTED_FORMATS",
    "infer_format_from_magic",
    "normalize_format",
    "parse_data_url",
    "probe_image",
    "to_png",
]
