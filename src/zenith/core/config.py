"""
Configuration management for zenith.

This module handles storage locations, cache ceilings, and result-fetching settings.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from zenith.logging_config import get_logger
from zenith.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

# Load environment variables from .env file
load_dotenv()

# Default configuration constants
DEFAULT_DATA_DIR = Path.home() / ".zenith"
DEFAULT_MAX_IMAGES = 500
DEFAULT_MAX_STORAGE_MB = 4096  # 4 GiB, sized for 2K/4K images
DEFAULT_WARNING_THRESHOLD_PERCENT = 80
DEFAULT_FETCH_TIMEOUT = 60

GRAPH_DB_NAME = "zenith-flow-v2.db"
BLOB_DB_NAME = "zenith-image-blobs.db"


@dataclass
class Config:
    """Configuration for the zenith graph store and blob cache."""

    # Storage locations
    data_dir: Path = DEFAULT_DATA_DIR

    # Blob cache ceilings
    max_images: int = DEFAULT_MAX_IMAGES
    max_storage_mb: int = DEFAULT_MAX_STORAGE_MB
    warning_threshold_percent: int = DEFAULT_WARNING_THRESHOLD_PERCENT

    # Result fetching
    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT  # seconds
    # Base URL of the provider proxy; when set, external images go through /api/proxy-image
    api_base_url: str = ""

    _validated: bool = field(default=False, repr=False)

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create a Config instance from environment variables.

        Environment variables:
            ZENITH_DATA_DIR: Directory holding the graph and blob databases
            ZENITH_MAX_IMAGES: Maximum number of cached image blobs (default 500)
            ZENITH_MAX_STORAGE_MB: Maximum total blob size in MiB (default 4096)
            ZENITH_WARNING_THRESHOLD_PERCENT: Near-limit warning threshold (default 80)
            ZENITH_FETCH_TIMEOUT: Timeout in seconds for fetching result bytes (default 60)
            ZENITH_API_URL: Optional provider proxy base URL

        Returns:
            Config instance populated from environment

        Raises:
            ConfigurationError: If a numeric variable is not an integer
        """

        def _int_env(name: str, default: int) -> int:
            val = os.getenv(name)
            if val is None or val.strip() == "":
                return default
            try:
                return int(val)
            except ValueError as e:
                raise ConfigurationError(f"{name} must be an integer, got {val!r}.") from e

        data_dir = os.getenv("ZENITH_DATA_DIR", "").strip()

        config = cls(
            data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
            max_images=_int_env("ZENITH_MAX_IMAGES", DEFAULT_MAX_IMAGES),
            max_storage_mb=_int_env("ZENITH_MAX_STORAGE_MB", DEFAULT_MAX_STORAGE_MB),
            warning_threshold_percent=_int_env(
                "ZENITH_WARNING_THRESHOLD_PERCENT", DEFAULT_WARNING_THRESHOLD_PERCENT
            ),
            fetch_timeout=_int_env("ZENITH_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT),
            api_base_url=os.getenv("ZENITH_API_URL", "").strip().rstrip("/"),
        )

        return config

    @property
    def max_storage_bytes(self) -> int:
        """Byte ceiling of the blob cache."""
        return self.max_storage_mb * 1024 * 1024

    @property
    def graph_db_path(self) -> Path:
        """SQLite file holding the persisted graph record."""
        return self.data_dir / GRAPH_DB_NAME

    @property
    def blob_db_path(self) -> Path:
        """SQLite file holding image blobs and their metadata."""
        return self.data_dir / BLOB_DB_NAME

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        logger.debug("Validating config")

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
        if self.fetch_timeout <= 0:
            raise ConfigurationError(
                f"fetch_timeout must be positive, got {self.fetch_timeout}."
            )
        if self.api_base_url and not self.api_base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"api_base_url must be an http(s) URL, got {self.api_base_url!r}."
            )

        self._validated = True

    def is_valid(self) -> bool:
        """
        Check if configuration has been validated.

        Returns:
            True if validate() has been called successfully
        """
        return self._validated

    def ensure_data_dir(self) -> Path:
        """
        Create the data directory if missing.

        Raises:
            ConfigurationError: If the directory cannot be created
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create data directory {self.data_dir}: {e}"
            ) from e
        return self.data_dir


# Global configuration instance
_global_config: Config | None = None


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        The global Config instance
    """
    global _global_config
    if _global_config is None:
        _global_config = Config.from_env()
    return _global_config


def set_config(config: Config) -> None:
    """
    Set the global configuration instance.

    Args:
        config: The Config instance to use globally
    """
    global _global_config
    _global_config = config
