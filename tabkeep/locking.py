from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLock:
    """One mutex per key, created on demand and dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_registry_guard = threading.Lock()
_by_store: "weakref.WeakKeyDictionary[object, KeyedLock]" = weakref.WeakKeyDictionary()


def locks_for(store: object) -> KeyedLock:
    """The process-wide KeyedLock of ``store``; every component writing that store shares it."""
    with _registry_guard:
        locks = _by_store.get(store)
        if locks is None:
            locks = _by_store[store] = KeyedLock()
        return locks
