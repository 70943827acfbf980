"""
Shared key/value memory for cross-agent coordination.

A parent agent and its subagents hold an explicit reference to the same
store instance; there is no global store. No transactional guarantees:
the last ``set`` wins and reads see the most recent write.
"""

from typing import Any, Iterator


class SharedMemoryStore:
    """Mapping from string keys to string or structured values."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        """Remove a key. Returns whether it was present."""
        if key in self._data:
            del self._data[key]
            return True
        return False

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of the current contents."""
        return dict(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))
