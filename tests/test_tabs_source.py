import json

import pytest

from tabkeep.errors import StoreError
from tabkeep.tabs import JsonFileTabSource, SnapshotTabSource, parse_windows


def test_parse_windows_accepts_window_list_and_flat_tabs():
    windows = parse_windows(
        [
            {"id": 7, "title": "Work", "tabs": [{"id": 1, "url": "https://a.com", "title": "A", "pinned": True}]},
            {"id": 8, "focused": True, "tabs": [{"url": "https://b.com"}]},
        ]
    )
    assert [w.id for w in windows] == [7, 8]
    assert windows[0].tabs[0].pinned is True
    assert windows[0].tabs[0].window_id == 7
    assert windows[1].focused
    assert windows[1].folder_name == "Window[8]"

    flat = parse_windows({"windows": [{"url": "https://c.com", "windowId": 3}]})
    assert len(flat) == 1
    assert flat[0].tabs[0].window_id == 3


def test_parse_windows_rejects_garbage():
    with pytest.raises(StoreError):
        parse_windows("tabs")
    with pytest.raises(StoreError):
        parse_windows([1, 2])


def test_focused_window_is_current_otherwise_first():
    src = SnapshotTabSource(parse_windows([{"id": 1, "tabs": []}, {"id": 2, "focused": True, "tabs": [{"url": "https://b.com"}]}]))
    assert src.current_window().id == 2
    assert [t.url for t in src.query()] == ["https://b.com"]

    src = SnapshotTabSource(parse_windows([{"id": 1, "tabs": [{"url": "https://a.com"}]}, {"id": 2, "tabs": []}]))
    assert src.current_window().id == 1


def test_create_and_remove_tabs():
    src = SnapshotTabSource(parse_windows([{"id": 1, "tabs": [{"id": 5, "url": "https://a.com"}]}]))
    blank = src.create(1)
    assert blank.id == 6
    assert blank.url == "about:newtab"
    src.remove([5])
    assert [t.id for t in src.query(current_window=False)] == [6]
    with pytest.raises(StoreError):
        src.create(99)


def test_json_snapshot_errors_are_store_errors(tmp_path):
    bad = tmp_path / "tabs.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError):
        SnapshotTabSource.from_json(bad)
    with pytest.raises(StoreError):
        SnapshotTabSource.from_json(tmp_path / "missing.json")


def test_json_file_source_rereads_the_file(tmp_path):
    path = tmp_path / "tabs.json"
    path.write_text(json.dumps([{"url": "https://a.com"}]), encoding="utf-8")
    src = JsonFileTabSource(path)
    assert [t.url for t in src.query()] == ["https://a.com"]

    path.write_text(json.dumps([{"url": "https://a.com"}, {"url": "https://b.com"}]), encoding="utf-8")
    assert [t.url for t in src.query(current_window=False)] == ["https://a.com", "https://b.com"]
    with pytest.raises(StoreError):
        src.remove([1])
