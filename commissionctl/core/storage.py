"""Persisted key/value storage backends and named contexts."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from commissionctl.core.errors import StorageError

LOGGER = logging.getLogger(__name__)
_STORAGE_FILE = "storage.json"


class StorageBackend(Protocol):
    def initialize(self) -> None:
        """Open the backing store. Calling it again is allowed."""

    def close(self) -> None:
        """Flush pending writes and release the store. Calling it again is a no-op."""

    def get(self, context: str, key: str, default: Any = None) -> Any:
        """Return the value stored under context/key or default."""

    def set(self, context: str, key: str, value: Any) -> None:
        """Store a JSON-serializable value under context/key."""

    def flush(self) -> None:
        """Write pending changes to durable storage."""


class MemoryStorageBackend:
    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._data: dict[str, dict[str, Any]] = {
            context: dict(values) for context, values in (initial or {}).items()
        }

    def initialize(self) -> None:
        pass

    def close(self) -> None:
        pass

    def flush(self) -> None:
        pass

    def get(self, context: str, key: str, default: Any = None) -> Any:
        return self._data.get(context, {}).get(key, default)

    def set(self, context: str, key: str, value: Any) -> None:
        self._data.setdefault(context, {})[key] = value


class DiskStorageBackend:
    """JSON document on disk; writes are buffered until flush() or close()."""

    def __init__(self, location: str | Path, *, clear: bool = False) -> None:
        self.location = Path(location)
        self.clear = clear
        self._data: dict[str, dict[str, Any]] = {}
        self._dirty = False
        self._open = False

    @property
    def path(self) -> Path:
        return self.location / _STORAGE_FILE

    def initialize(self) -> None:
        if self._open:
            return
        try:
            self.location.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create storage directory {self.location}: {exc}") from exc

        if self.clear and self.path.exists():
            LOGGER.info("Clearing storage at %s", self.path)
            self.path.unlink()
        self._data = self._read()
        self._dirty = False
        self._open = True

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Could not read storage file {self.path}: {exc}") from exc
        try:
            loaded = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as exc:
            raise StorageError(f"Storage file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(loaded, dict) or not all(isinstance(v, dict) for v in loaded.values()):
            raise StorageError(f"Storage file {self.path} must contain a mapping of contexts")
        return loaded

    def _require_open(self) -> None:
        if not self._open:
            raise StorageError("Storage is not initialized")

    def get(self, context: str, key: str, default: Any = None) -> Any:
        self._require_open()
        return self._data.get(context, {}).get(key, default)

    def set(self, context: str, key: str, value: Any) -> None:
        self._require_open()
        self._data.setdefault(context, {})[key] = value
        self._dirty = True

    def flush(self) -> None:
        if not self._open or not self._dirty:
            return
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.location, prefix=".storage-", suffix=".json")
        except OSError as exc:
            raise StorageError(f"Could not write storage file {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError) as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Could not write storage file {self.path}: {exc}") from exc
        self._dirty = False
        LOGGER.debug("Flushed storage to %s", self.path)

    def close(self) -> None:
        if not self._open:
            return
        try:
            self.flush()
        finally:
            self._open = False


class StorageContext:
    """Key/value view scoped to one named context of a backend."""

    def __init__(self, backend: StorageBackend, name: str) -> None:
        self.backend = backend
        self.name = name

    def get(self, key: str, default: Any = None) -> Any:
        return self.backend.get(self.name, key, default)

    def set(self, key: str, value: Any) -> None:
        self.backend.set(self.name, key, value)

    def flush(self) -> None:
        self.backend.flush()
