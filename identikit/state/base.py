"""Abstract base class for pluggable key-value storage.

Storage backends hold the persisted session token and the short-lived
redirect recovery entries. Operations are synchronous: token reads must
never suspend the caller.
"""

# pylint: disable=unnecessary-ellipsis

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStorage(ABC):
    """Abstract string key-value storage interface.

    Implementations raise ``StorageError`` when the underlying medium is
    unavailable; callers decide whether that is fatal.
    """

    #: Backend name used in log messages and errors.
    name: str = "abstract"

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Read a value.

        Parameters
        ----------
        key : str
            The storage key.

        Returns
        -------
        str or None
            The stored value, or None if the key is absent.
        """
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Write a value, replacing any previous one.

        Parameters
        ----------
        key : str
            The storage key.
        value : str
            The value to store.
        """
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete a value. Removing an absent key is not an error.

        Parameters
        ----------
        key : str
            The storage key.
        """
        ...

    def pop_item(self, key: str) -> str | None:
        """Read and delete a value in one step."""
        value = self.get_item(key)
        if value is not None:
            self.remove_item(key)
        return value
