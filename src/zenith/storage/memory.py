"""In-process key-value store for ephemeral sessions and tests."""


class MemoryKeyValueStore:
    """KeyValueStore backed by a dict. Contents vanish with the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def size(self) -> int:
        """Number of stored keys."""
        return len(self._data)
