"""
Fetching result image bytes.

The provider proxy returns a reference to each generated image: either an
inline data URL or an http(s) URL. External URLs can be routed through the
proxy's /api/proxy-image endpoint (set ZENITH_API_URL) for hosts that cannot
be reached directly.
"""

import time
from urllib.parse import quote, urlparse

import requests

from zenith.core.config import Config, get_config
from zenith.core.imaging import parse_data_url
from zenith.logging_config import get_logger
from zenith.utils.exceptions import (
    APIError,
    NetworkError,
    RequestTimeoutError,
    ValidationError,
)

logger = get_logger(__name__)


def proxied_url(url: str, config: Config) -> str:
    """Route an external http(s) URL through the proxy when one is configured."""
    if not config.api_base_url or not url.startswith(("http://", "https://")):
        return url
    if urlparse(url).netloc == urlparse(config.api_base_url).netloc:
        return url
    return f"{config.api_base_url}/api/proxy-image?url={quote(url, safe='')}"


def fetch_image_bytes(url: str, config: Config | None = None) -> bytes:
    """
    Return the raw bytes behind a result URL.

    Args:
        url: data: URL or http(s) URL from the generation result
        config: Optional config; if None, uses shared config from get_config()

    Raises:
        ValidationError: If the URL is empty, malformed, or has an unsupported scheme
        APIError: If the server answers with a non-200 status or an empty body
        NetworkError: If the host cannot be reached
        RequestTimeoutError: If the download exceeds config.fetch_timeout
    """
    if not url or not url.strip():
        raise ValidationError("Result URL cannot be empty", field="url")

    if url.startswith("data:"):
        data, _fmt = parse_data_url(url)
        logger.debug("Decoded data URL bytes=%d", len(data))
        return data

    if not url.startswith(("http://", "https://")):
        raise ValidationError(f"Unsupported result URL scheme: {url[:32]}", field="url")

    config = config or get_config()
    fetch_url = proxied_url(url, config)
    timeout = config.fetch_timeout

    logger.debug("Fetching result url=%s timeout=%s", fetch_url, timeout)
    start_time = time.time()
    try:
        response = requests.get(fetch_url, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise RequestTimeoutError(f"Fetching image timed out after {timeout} seconds.") from e
    except requests.exceptions.ConnectionError as e:
        raise NetworkError(
            f"Failed to connect while fetching image from {urlparse(fetch_url).netloc}.",
            original_error=e,
        ) from e
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Network error while fetching image: {str(e)}", original_error=e) from e
    elapsed = time.time() - start_time

    logger.debug(
        "Fetch response status=%s content_type=%s time=%.2fs",
        response.status_code,
        response.headers.get("content-type", ""),
        elapsed,
    )

    if response.status_code == 404:
        raise APIError(
            "Image not found; the provider may have expired it.",
            status_code=404,
            response=response.text,
        )
    if response.status_code != 200:
        raise APIError(
            f"Image download failed with status {response.status_code}",
            status_code=response.status_code,
            response=response.text,
        )
    if not response.content:
        raise APIError("Image download returned an empty body", status_code=200)

    return response.content


__all__ = ["fetch_image_bytes", "proxied_url"]
