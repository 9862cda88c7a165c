from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .errors import StoreError
from .log import get_logger

log = get_logger(__name__)

# {key: (old_value, new_value)}
Changes = Dict[str, Tuple[Any, Any]]
ChangeListener = Callable[[Changes], None]


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def add_listener(self, listener: ChangeListener) -> None:
        ...

    def has_listener(self, listener: ChangeListener) -> bool:
        ...

    def remove_listener(self, listener: ChangeListener) -> None:
        ...


class _ChangeFeed:
    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []
        self._listeners_lock = threading.Lock()

    def add_listener(self, listener: ChangeListener) -> None:
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def has_listener(self, listener: ChangeListener) -> bool:
        with self._listeners_lock:
            return listener in self._listeners

    def remove_listener(self, listener: ChangeListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, changes: Changes) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(changes)
            except Exception:
                log.exception("Settings change listener %r failed", listener)


class MemoryKeyValueStore(_ChangeFeed):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._lock = threading.Lock()
        self._data: Dict[str, str] = {k: json.dumps(v) for k, v in (initial or {}).items()}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            old_raw = self._data.get(key)
            self._data[key] = json.dumps(value, ensure_ascii=False)
        old = None if old_raw is None else json.loads(old_raw)
        self._notify({key: (old, value)})


class SqliteKeyValueStore(_ChangeFeed):
    """JSON documents keyed by name in a small SQLite file.

    Each call opens its own connection, so timer threads and the caller's thread
    can share one instance.
    """

    def __init__(self, db_path: Path | str):
        super().__init__()
        self.db_path = Path(db_path)
        self._init()

    def _init(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot initialize settings store {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[Any]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute("SELECT value_json FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"settings store read failed ({self.db_path}): {e}") from e
        if row is None:
            return None
        return _safe_json(row[0])

    def set(self, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute("SELECT value_json FROM kv WHERE key = ?", (key,)).fetchone()
                conn.execute(
                    """
                    INSERT INTO kv (key, value_json, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json=excluded.value_json,
                        updated_at=excluded.updated_at
                    """,
                    (key, json.dumps(value, ensure_ascii=False), now),
                )
        except sqlite3.Error as e:
            raise StoreError(f"settings store write failed ({self.db_path}): {e}") from e
        old = _safe_json(row[0]) if row is not None else None
        self._notify({key: (old, value)})


def _safe_json(value: Optional[str]) -> Optional[Any]:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        log.warning("Discarding unreadable settings value: %.60s", value)
        return None
