"""
qaboard.store.blob — Named-Blob Storage
========================================

The local store keeps its whole state in one string under one key, the way
a browser keeps it in ``localStorage``.  Two backings:

* :class:`FileBlobStorage` — ``<directory>/<key>.json``, replaced
  atomically so a crash mid-write never leaves half a document.
* :class:`MemoryBlobStorage` — a dict, for tests and embedding.
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol


class BlobStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...


class MemoryBlobStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()
        self._document_locks: dict[str, threading.Lock] = {}

    def document_lock(self, key: str) -> threading.Lock:
        """Mutex for load-mutate-save cycles on *key*; lives as long as this storage."""
        with self._lock:
            return self._document_locks.setdefault(key, threading.Lock())

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value


class FileBlobStorage:
    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
