"""Factory functions for storage backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .file import FileStorage
from .memory import MemoryStorage


if TYPE_CHECKING:
    from ..config import StorageSettings
    from .base import KeyValueStorage


def create_storage(backend: str = "memory", **kwargs: Any) -> KeyValueStorage:
    """Create a storage backend by name.

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "file", or "keyring".
    **kwargs : Any
        ``path`` for the file backend, ``service_name`` for keyring.

    Returns
    -------
    KeyValueStorage
        A configured storage instance.
    """
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        path = kwargs.get("path")
        if not path:
            msg = "The file storage backend requires a path"
            raise ValueError(msg)
        return FileStorage(path)
    if backend == "keyring":
        from .keyring_store import KeyringStorage

        return KeyringStorage(service_name=kwargs.get("service_name", "identikit"))
    msg = f"Unknown storage backend: {backend}"
    raise ValueError(msg)


def storage_from_settings(settings: StorageSettings) -> KeyValueStorage:
    """Create the durable token storage described by settings."""
    return create_storage(
        settings.backend,
        path=settings.path,
        service_name=settings.keyring_service,
    )


def session_storage_from_settings(settings: StorageSettings) -> KeyValueStorage:
    """Create the short-lived redirect storage described by settings."""
    return create_storage(settings.session_backend, path=settings.session_path)
