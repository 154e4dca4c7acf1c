# db/store.py
from __future__ import annotations

import json
import sqlite3
from typing import Any

from db.database import get_value, set_value

# Each blob is versioned through its key; there is no cross-key transaction.
SETTINGS_KEY = "session-settings.v1"
HISTORY_KEY = "play-history.v1"
LIKED_KEY = "liked-tracks.v1"
SEARCH_HISTORY_KEY = "search-history.v1"
VOLUME_KEY = "volume.v1"


class PersistentStore:
    """
    Durable key -> JSON mapping.

    get() returns `default` for missing keys; set() replaces the whole value.
    """

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError


class SqliteStore(PersistentStore):
    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def get(self, key: str, default: Any = None) -> Any:
        raw = get_value(self.db, key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        set_value(self.db, key, json.dumps(value, ensure_ascii=False))


class MemoryStore(PersistentStore):
    """In-process store; values go through JSON so callers never share references."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def keys(self) -> list[str]:
        return sorted(self._data)
