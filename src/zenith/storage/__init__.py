"""
Persistence for zenith: the key-value adapter protocol and its implementations,
plus the blob cache for image bytes.
"""

from zenith.storage.base import KeyValueStore as KeyValueStore
from zenith.storage.memory import MemoryKeyValueStore
from zenith.storage.sqlite import SQLiteKeyValueStore

__all__ = ["KeyValueStore", "MemoryKeyValueStore", "SQLiteKeyValueStore"]
