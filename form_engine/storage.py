"""
Durable key-value storage for form state.

PersistentStore wraps a synchronous storage medium (get_item / set_item /
remove_item over strings) with fail-soft semantics: a missing medium, a medium
that raises, or a corrupted payload never propagates to the caller. Values are
JSON-encoded, empty containers are stored as "no entry", and writes of an
unchanged value never reach the medium.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union
import logging

from deepdiff import DeepDiff

from .config_loader import get_config_value
from .exceptions import StorageFault

logger = logging.getLogger(__name__)

_MISSING = object()


class StorageKey:
    """Logical keys used by the form engine."""
    SCHEMA_URL = "schema_source_url"
    FORM_ACTIVE = "form_is_active"
    SCHEMA_DATA = "schema_document_cache"
    FORM_DATA = "form_field_values"


class MemoryStorageMedium:
    """In-process storage medium. Counts mutations so tests can observe I/O."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})
        self.set_count = 0
        self.remove_count = 0

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self.set_count += 1

    def remove_item(self, key: str) -> None:
        self.remove_count += 1
        self._items.pop(key, None)

    def keys(self):
        return list(self._items.keys())


class FileStorageMedium:
    """
    Storage medium keeping one JSON file per key inside a directory.

    A payload truncated by a crash mid-write reads back as corrupt and is
    dropped by PersistentStore.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self._path(key), 'w', encoding='utf-8') as f:
            f.write(value)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def _is_empty_container(value: Any) -> bool:
    return isinstance(value, (dict, list, tuple)) and len(value) == 0


class PersistentStore:
    """Fail-soft JSON store over a storage medium."""

    def __init__(self, medium: Any = None):
        self.medium = medium
        self.fault_count = 0

    @property
    def is_available(self) -> bool:
        return self.medium is not None

    def _fault(self, operation: str, key: str, error: Optional[Exception] = None) -> None:
        fault = StorageFault(operation, key, error)
        self.fault_count += 1
        logger.warning(f"{fault.message}; continuing with in-memory state")

    def _read_raw(self, key: str) -> Tuple[bool, Optional[str]]:
        """Return (ok, raw payload). ok is False when the medium failed."""
        if self.medium is None:
            return False, None
        try:
            return True, self.medium.get_item(key)
        except Exception as e:
            self._fault("read", key, e)
            return False, None

    def _decode(self, key: str, raw: Optional[str], expect: Optional[Type] = None) -> Any:
        """Decode a raw payload, removing it when corrupt. Returns _MISSING if absent."""
        if raw is None:
            return _MISSING
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupted payload for key '{key}' ({e}); removing entry")
            self.remove(key)
            return _MISSING
        if expect is not None and not isinstance(value, expect):
            logger.warning(f"Unexpected payload type for key '{key}': "
                           f"{type(value).__name__}; removing entry")
            self.remove(key)
            return _MISSING
        return value

    def get(self, key: str, default: Any = None, expect: Optional[Type] = None) -> Any:
        """
        Read a value.

        Args:
            key: Storage key
            default: Value returned when the key is absent, corrupt or unreadable
            expect: Optional type (or tuple of types) the decoded value must have

        Returns:
            Decoded value or default
        """
        ok, raw = self._read_raw(key)
        if not ok:
            return default
        value = self._decode(key, raw, expect)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any) -> None:
        """
        Write a value. Empty containers and None remove the key; an unchanged
        value is not written again.
        """
        if value is None or _is_empty_container(value):
            self.remove(key)
            return

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Value for key '{key}' is not JSON serializable: {e}")
            return

        if self.medium is None:
            logger.debug(f"Storage unavailable, skipping write of '{key}'")
            return

        ok, raw = self._read_raw(key)
        if ok and raw is not None:
            if raw == payload:
                return
            current = self._decode(key, raw)
            if current is not _MISSING and not DeepDiff(current, json.loads(payload)):
                logger.debug(f"Value for '{key}' unchanged, skipping write")
                return

        try:
            self.medium.set_item(key, payload)
            logger.debug(f"Stored key '{key}'")
        except Exception as e:
            self._fault("write", key, e)

    def remove(self, key: str) -> None:
        """Remove a key. Removing an absent key is a no-op."""
        if self.medium is None:
            return
        try:
            self.medium.remove_item(key)
        except Exception as e:
            self._fault("remove", key, e)

    def purge(self, *keys: str) -> None:
        """Remove several keys."""
        for key in keys:
            self.remove(key)


# Process-wide store instance
_default_store: Optional[PersistentStore] = None


def create_medium_from_config() -> Any:
    """Build the storage medium described by the storage config section."""
    backend = get_config_value('storage', 'backend', 'file')
    if backend == 'memory':
        return MemoryStorageMedium()

    directory = get_config_value('storage', 'directory', '.form_storage')
    try:
        Path(directory).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Storage directory {directory} unavailable ({e}); "
                       f"form state will not survive restarts")
        return None
    return FileStorageMedium(directory)


def get_default_store() -> PersistentStore:
    """Get the process-wide persistent store, creating it on first use."""
    global _default_store
    if _default_store is None:
        _default_store = PersistentStore(create_medium_from_config())
        logger.info(f"Persistent store created (available: {_default_store.is_available})")
    return _default_store


def reset_default_store(store: Optional[PersistentStore] = None) -> None:
    """Replace (or drop) the process-wide store. Intended for tests."""
    global _default_store
    _default_store = store
