"""Key/value stores backing the session cache."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a store cannot persist a write."""
    pass


class KeyValueStore:
    """String-to-string store with the browser storage surface."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Process-scoped store; forgotten when the process exits."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)


class FileStore(KeyValueStore):
    """Persistent store kept as a single JSON object on disk."""

    def __init__(self, path: Union[str, Path]):
        """Initialize store; the file is read lazily on first access."""
        self.path = Path(path)
        self._items: Optional[Dict[str, str]] = None

    @property
    def items(self) -> Dict[str, str]:
        """Load the backing file once, treating a missing or corrupt file as empty."""
        if self._items is None:
            self._items = self._load()
        return self._items

    def _load(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning(f"Could not read storage file {self.path}: {e}")
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt storage file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring storage file {self.path}: expected a JSON object")
            return {}

        return {str(k): str(v) for k, v in data.items()}

    def _flush(self, items: Dict[str, str]) -> None:
        """Write items atomically (temp file + replace); memory is updated by the caller on success."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                    json.dump(items, tmp_file)
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Failed to write storage file {self.path}: {e}")
            raise StorageError(f"Failed to persist storage: {e}")

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        updated = {**self.items, key: str(value)}
        self._flush(updated)
        self._items = updated

    def remove_item(self, key: str) -> None:
        if key in self.items:
            updated = {k: v for k, v in self.items.items() if k != key}
            self._flush(updated)
            self._items = updated

    def keys(self) -> List[str]:
        return list(self.items)


class StorageManager:
    """Pairs the persistent store with the process-scoped one."""

    def __init__(
        self,
        persistent: Optional[KeyValueStore] = None,
        session: Optional[KeyValueStore] = None
    ):
        """
        Initialize storage manager.

        Args:
            persistent: Store surviving restarts. Defaults to a FileStore at settings.storage_path.
            session: Store scoped to this process. Defaults to a fresh MemoryStore.
        """
        self.persistent = persistent if persistent is not None else FileStore(settings.storage_path)
        self.session = session if session is not None else MemoryStore()

    @classmethod
    def in_memory(cls) -> "StorageManager":
        """Both stores in memory; nothing touches the disk."""
        return cls(persistent=MemoryStore(), session=MemoryStore())
