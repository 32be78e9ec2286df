"""
Persistence adapter protocol.

Defines the durable key-value substrate the graph store serializes into.
"""

from typing import Protocol


class KeyValueStore(Protocol):
    """Protocol for durable string key-value stores.

    Implementations raise PersistenceError when the substrate is unavailable
    or refuses a write; callers decide whether to absorb it.
    """

    async def open(self) -> None:
        """Open the substrate. Idempotent."""
        ...

    async def close(self) -> None:
        """Release the substrate. Idempotent."""
        ...

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove key. Unknown keys are a no-op."""
        ...
