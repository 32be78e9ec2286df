"""
zenith - generation graph store with a bounded image blob cache

A Python package that keeps a node graph of image generation requests
(configuration nodes) and their outputs (image nodes), and stores the image
bytes in a separate count- and size-bounded LRU blob cache.

Library usage:
- Build a FlowSession (FlowSession.from_config(config) for durable storage,
  FlowSession.in_memory() for a throwaway one) and use it as an async context
  manager. Graph-only commands live on session.graph; commands that touch both
  stores (delete_config, clear_all, record_result, cleanup) live on the session.
- Configuration can be passed explicitly or via the shared config: use
  get_config() / set_config().
- Logging: control verbosity with set_verbosity(0|1|2) or configure_logging(verbose_level, quiet);
  ZENITH_VERBOSITY env (0/1/2) is read when CLI runs or when logging is configured.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zenith-flow")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source in development)
    __version__ = "0.0.0.dev"

from zenith.core.config import Config, get_config, set_config
from zenith.core.governor import CleanupRequest, StorageGovernor, StoreOutcome, StoreStatus
from zenith.core.graph import GraphState, GraphStore
from zenith.core.models import (
    ConfigurationNode,
    Edge,
    FlowNode,
    GenerationResult,
    ImageNode,
    PreviewInput,
)
from zenith.core.session import FlowSession, PurgeReport, ResultOutcome
from zenith.logging_config import configure_logging, set_verbosity
from zenith.storage.blob_cache import (
    CLEANUP_NEEDED,
    BlobCache,
    BlobRecord,
    LimitCheck,
    StorageLimits,
    StorageStats,
)
from zenith.utils.exceptions import (
    APIError,
    ConfigurationError,
    ImageProcessingError,
    NetworkError,
    PersistenceError,
    RequestTimeoutError,
    ValidationError,
    ZenithError,
)

__all__ = [
    "APIError",
    "BlobCache",
    "BlobRecord",
    "CLEANUP_NEEDED",
    "CleanupRequest",
    "Config",
    "ConfigurationError",
    "ConfigurationNode",
    "Edge",
    "FlowNode",
    "FlowSession",
    "GenerationResult",
    "GraphState",
    "GraphStore",
    "ImageNode",
    "ImageProcessingError",
    "LimitCheck",
    "NetworkError",
    "PersistenceError",
    "PreviewInput",
    "PurgeReport",
    "RequestTimeoutError",
    "ResultOutcome",
    "StorageGovernor",
    "StorageLimits",
    "StorageStats",
    "StoreOutcome",
    "StoreStatus",
    "ValidationError",
    "ZenithError",
    "configure_logging",
    "get_config",
    "set_config",
    "set_verbosity",
]
