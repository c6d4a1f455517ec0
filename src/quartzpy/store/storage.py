"""Storage backends for the job store.

A backend keeps one StoreData document and offers two things: named
mutual-exclusion locks, and transactions that read the document, let the
caller mutate it, and write it back when the block exits cleanly.

MemoryStorage keeps the document in process. JsonFileStorage keeps it in
a JSON file guarded with file locks, so several processes sharing the
file see each other's changes and exclude each other on named locks.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Iterator

from filelock import FileLock

from quartzpy.store.records import STORAGE_VERSION, StoreData, migrate_data

logger = logging.getLogger(__name__)

LOCK_TRIGGER_ACCESS = "TRIGGER_ACCESS"
LOCK_ALL_GROUPS_PAUSED = "ALL_GROUPS_PAUSED"


class Storage(ABC):
    """Interface shared by the storage backends."""

    @abstractmethod
    def lock(self, name: str) -> ContextManager:
        """Named lock, held for the duration of the ``with`` block."""

    @abstractmethod
    def read(self) -> StoreData:
        """Snapshot of the stored document."""

    @abstractmethod
    def transaction(self) -> ContextManager[StoreData]:
        """Yield the document for mutation and persist it on clean exit.

        Changes made inside a block that raises are discarded.
        """


class MemoryStorage(Storage):
    """In-process storage. Named locks are reentrant thread locks."""

    def __init__(self) -> None:
        self._data = StoreData()
        self._io_lock = threading.RLock()
        self._locks: dict[str, threading.RLock] = {}

    def lock(self, name: str) -> ContextManager:
        with self._io_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
        return lock

    def read(self) -> StoreData:
        with self._io_lock:
            return self._data.model_copy(deep=True)

    @contextmanager
    def transaction(self) -> Iterator[StoreData]:
        with self._io_lock:
            data = self._data.model_copy(deep=True)
            yield data
            self._data = data


class JsonFileStorage(Storage):
    """JSON file storage guarded by file locks.

    The document is read and written under ``<file>.lock``. Each named lock
    is a separate ``<file>.<NAME>.lock`` file.

    Example:
        storage = JsonFileStorage("~/.quartzpy/store.json")
        store = JobStore(storage=storage)
    """

    def __init__(
        self,
        path: str | Path,
        create_if_missing: bool = True,
    ) -> None:
        """Initialize the file storage.

        Args:
            path: Path to the JSON storage file.
            create_if_missing: Create the file if it doesn't exist.
        """
        self._path = Path(path).expanduser()
        self._io_lock = FileLock(str(self._path.with_suffix(".lock")))
        self._create_if_missing = create_if_missing
        self._locks: dict[str, FileLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def path(self) -> Path:
        """Get the storage file path."""
        return self._path

    def lock(self, name: str) -> ContextManager:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock_path = self._path.with_name(f"{self._path.stem}.{name}.lock")
                lock = self._locks[name] = FileLock(str(lock_path))
        return lock

    def _ensure_file_exists(self) -> None:
        if not self._path.exists():
            if self._create_if_missing:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._write_data(StoreData())
                logger.info(f"Created job store file: {self._path}")
            else:
                raise FileNotFoundError(f"Job store file not found: {self._path}")

    def _read_data(self) -> StoreData:
        """Read and parse the storage file.

        Raises:
            FileNotFoundError: If file doesn't exist and create_if_missing is False.
            json.JSONDecodeError: If file contains invalid JSON.
        """
        self._ensure_file_exists()

        content = self._path.read_text(encoding="utf-8")
        if not content.strip():
            return StoreData()

        data = json.loads(content)

        version = data.get("version", 1)
        if version != STORAGE_VERSION:
            data = migrate_data(data, version)

        return StoreData.model_validate(data)

    def _write_data(self, data: StoreData) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data.model_dump(mode="json"), indent=2)
        # Write then rename so readers never see a half-written file
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(self._path)

    def read(self) -> StoreData:
        with self._io_lock:
            return self._read_data()

    @contextmanager
    def transaction(self) -> Iterator[StoreData]:
        with self._io_lock:
            data = self._read_data()
            yield data
            self._write_data(data)
            logger.debug(
                f"Saved {len(data.jobs)} jobs and {len(data.triggers)} triggers to {self._path}"
            )
