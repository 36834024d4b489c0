"""In-memory key-value storage.

Default session storage and the fallback when no durable medium is
available. Contents live for the lifetime of the process.
"""

from __future__ import annotations

import threading

from .base import KeyValueStorage


class MemoryStorage(KeyValueStorage):
    """Process-local storage backed by a dict.

    Thread-safe via a lock so the relay server thread may share it.
    """

    name = "memory"

    def __init__(self) -> None:
        """Initialize the memory storage."""
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        """Read a value from memory."""
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        """Write a value to memory."""
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        """Delete a value from memory."""
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> list[str]:
        """List stored keys."""
        with self._lock:
            return list(self._items)
