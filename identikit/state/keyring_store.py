"""OS keyring-backed key-value storage for persistent native credentials.

Requires the ``keyring`` package: ``pip install identikit[keyring]``
"""

from __future__ import annotations

from typing import Any

from ..exceptions import StorageError
from .base import KeyValueStorage


class KeyringStorage(KeyValueStorage):
    """Stores each key as a separate keyring password entry.

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "identikit").
    """

    name = "keyring"

    def __init__(self, service_name: str = "identikit") -> None:
        """Initialize the keyring storage."""
        try:
            import keyring as _keyring
        except ImportError:
            msg = "Install keyring for persistent token storage: pip install identikit[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring: Any = _keyring

    def get_item(self, key: str) -> str | None:
        """Read a value from the OS keyring."""
        try:
            return self._keyring.get_password(self._service_name, key)
        except self._keyring.errors.KeyringError as exc:
            raise StorageError(str(exc), key=key, backend=self.name) from exc

    def set_item(self, key: str, value: str) -> None:
        """Write a value to the OS keyring."""
        try:
            self._keyring.set_password(self._service_name, key, value)
        except self._keyring.errors.KeyringError as exc:
            raise StorageError(str(exc), key=key, backend=self.name) from exc

    def remove_item(self, key: str) -> None:
        """Delete a value from the OS keyring."""
        try:
            self._keyring.delete_password(self._service_name, key)
        except self._keyring.errors.PasswordDeleteError:
            return  # Already absent
        except self._keyring.errors.KeyringError as exc:
            raise StorageError(str(exc), key=key, backend=self.name) from exc
