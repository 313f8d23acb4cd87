"""Key-value persistence for user preferences.

The core never talks to a concrete backend: callers inject any object with
``get`` / ``set`` / ``delete``. Two implementations ship here:

    InMemoryStore   – process-local dict (tests, short-lived jobs)
    JsonFileStore   – single JSON document on disk, guarded by a lock
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

SELECTED_OWNER_KEY = "selected_owner"


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Persist values in one JSON file. Reads and writes are thread-safe."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.warning("Preference file %s unreadable, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)


def load_selected_owner(store: KeyValueStore) -> Optional[str]:
    """Return the persisted default Sub-IB owner, or None when unset."""
    value = store.get(SELECTED_OWNER_KEY)
    if isinstance(value, str) and value.strip():
        return value
    return None


def save_selected_owner(store: KeyValueStore, owner_name: Optional[str]) -> None:
    if owner_name:
        store.set(SELECTED_OWNER_KEY, owner_name)
    else:
        store.delete(SELECTED_OWNER_KEY)
