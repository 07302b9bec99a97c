"""Durable key-value storage for fertility records.

DataManager talks to storage only through the ``RecordStore`` interface.
Values are JSON-serialisable (dicts, lists, strings, numbers).

Storage keys:
    - user_settings   UserSettings dict
    - day_records     {ISO date: DayRecord dict}
    - cycles          [MenstrualCycle dict, ...]
    - app_version     schema/app version marker
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger("fertility.store")

USER_SETTINGS = "user_settings"
DAY_RECORDS = "day_records"
CYCLES = "cycles"
APP_VERSION = "app_version"


class StorageError(Exception):
    """Raised by a store adapter when the backing storage fails.

    DataManager never retries or swallows it.
    """


class RecordStore(ABC):
    """Abstract key-value store backing the DataManager.

    Subclasses must implement:
        - get_item()
        - set_item()
        - remove_item()
    """

    @abstractmethod
    async def get_item(self, key: str) -> Any | None:
        """Read a value.

        Args:
            key: Storage key.

        Returns:
            The stored value, or None if the key is absent.
        """

    @abstractmethod
    async def set_item(self, key: str, value: Any) -> None:
        """Write a JSON-serialisable value, replacing any previous one."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Delete a key.  Removing an absent key is not an error."""


class InMemoryRecordStore(RecordStore):
    """Process-local store, used in tests and when embedding the engine.

    Values are deep-copied on the way in and out, mirroring a real
    serialising backend.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get_item(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set_item(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        """Copy of everything stored, for inspection in tests."""
        return copy.deepcopy(self._data)


class JsonFileRecordStore(RecordStore):
    """Store every key in one JSON document on disk.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so readers never see a half-written document.
    File I/O runs in a worker thread to keep the event loop free.

    Usage::

        store = JsonFileRecordStore(Path("~/.fertility/records.json").expanduser())
        await store.set_item("cycles", [])
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_document(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt record file {self._path}: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Cannot read record file {self._path}: {exc}") from exc
        if not isinstance(document, dict):
            raise StorageError(f"Record file {self._path} does not hold a JSON object")
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, ensure_ascii=False, sort_keys=True)
            os.replace(tmp_name, self._path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Cannot write record file {self._path}: {exc}") from exc

    async def get_item(self, key: str) -> Any | None:
        document = await asyncio.to_thread(self._read_document)
        return document.get(key)

    async def set_item(self, key: str, value: Any) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._read_document)
            document[key] = value
            await asyncio.to_thread(self._write_document, document)
        logger.debug("Wrote %s to %s", key, self._path)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._read_document)
            if key not in document:
                return
            del document[key]
            await asyncio.to_thread(self._write_document, document)
        logger.debug("Removed %s from %s", key, self._path)


def create_store(backend: str, path: Path | None = None) -> RecordStore:
    """Build a store adapter by name.

    Args:
        backend: 'memory' or 'json'.
        path:    Document path, required for the 'json' backend.

    Returns:
        A RecordStore instance.

    Raises:
        ValueError: For an unknown backend or a missing path.
    """
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "json":
        if path is None:
            raise ValueError("The json storage backend needs a storage path")
        return JsonFileRecordStore(path)
    raise ValueError(f"Unknown storage backend: {backend!r} (expected 'memory' or 'json')")
