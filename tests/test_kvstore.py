import sqlite3

import pytest

from tabkeep.errors import StoreError
from tabkeep.kvstore import MemoryKeyValueStore, SqliteKeyValueStore


def test_sqlite_store_persists_json_across_instances(tmp_path):
    db = tmp_path / "state" / "settings.sqlite"
    SqliteKeyValueStore(db).set("settings", {"autosave": True, "interval": "5", "lastfolder": None})
    again = SqliteKeyValueStore(db)
    assert again.get("settings") == {"autosave": True, "interval": "5", "lastfolder": None}
    assert again.get("missing") is None


def test_sqlite_store_upserts_and_reports_old_value(tmp_path):
    store = SqliteKeyValueStore(tmp_path / "kv.sqlite")
    changes = []
    store.add_listener(changes.append)
    store.set("stats", {"totalSaves": 1})
    store.set("stats", {"totalSaves": 2})
    assert changes == [
        {"stats": (None, {"totalSaves": 1})},
        {"stats": ({"totalSaves": 1}, {"totalSaves": 2})},
    ]
    conn = sqlite3.connect(tmp_path / "kv.sqlite")
    try:
        assert conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0] == 1
    finally:
        conn.close()


def test_sqlite_store_discards_corrupt_values(tmp_path):
    db = tmp_path / "kv.sqlite"
    store = SqliteKeyValueStore(db)
    conn = sqlite3.connect(db)
    try:
        conn.execute("INSERT INTO kv(key, value_json, updated_at) VALUES('settings', '{oops', 'now')")
        conn.commit()
    finally:
        conn.close()
    assert store.get("settings") is None


def test_sqlite_store_wraps_unusable_path(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(StoreError):
        SqliteKeyValueStore(blocker / "kv.sqlite")


def test_listener_registration_is_idempotent_and_failures_are_contained(caplog):
    store = MemoryKeyValueStore()
    calls = []

    def listener(changes):
        calls.append(changes)

    def broken(changes):
        raise RuntimeError("listener bug")

    store.add_listener(broken)
    store.add_listener(listener)
    store.add_listener(listener)
    assert store.has_listener(listener)

    with caplog.at_level("ERROR"):
        store.set("k", 1)
    assert calls == [{"k": (None, 1)}]
    assert any("failed" in r.getMessage() for r in caplog.records)

    store.remove_listener(listener)
    store.set("k", 2)
    assert len(calls) == 1


def test_memory_store_returns_copies(kv):
    value = {"a": [1]}
    kv.set("k", value)
    value["a"].append(2)
    assert kv.get("k") == {"a": [1]}
