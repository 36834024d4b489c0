"""JSON-file key-value storage.

Durable backend for desktop use: all entries live in one JSON object on
disk, rewritten atomically on every mutation.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading

from pathlib import Path

from ..exceptions import StorageError
from .base import KeyValueStorage


class FileStorage(KeyValueStorage):
    """Key-value storage persisted to a JSON file.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file. Parent directories are created on
        first write.
    """

    name = "file"

    def __init__(self, path: str | Path) -> None:
        """Initialize the file storage."""
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        """Load the whole file, treating a missing file as empty."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            msg = f"Cannot read storage file: {exc}"
            raise StorageError(msg, backend=self.name, path=str(self.path)) from exc

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            msg = f"Storage file is not valid JSON: {exc}"
            raise StorageError(msg, backend=self.name, path=str(self.path)) from exc
        if not isinstance(data, dict):
            msg = "Storage file does not contain a JSON object"
            raise StorageError(msg, backend=self.name, path=str(self.path))
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        """Replace the file contents atomically."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".identikit-")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            msg = f"Cannot write storage file: {exc}"
            raise StorageError(msg, backend=self.name, path=str(self.path)) from exc

    def get_item(self, key: str) -> str | None:
        """Read a value from the file."""
        with self._lock:
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        """Write a value to the file."""
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        """Delete a value from the file."""
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
