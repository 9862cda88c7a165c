from datetime import date, timedelta

import pytest

from tabkeep.bookmarks import MemoryBookmarkStore
from tabkeep.errors import StoreError
from tabkeep.retention import RetentionPruner, parse_folder_date

TODAY = date(2024, 6, 30)


def _autosave_root(store):
    return store.create("toolbar_____", "AUTOSAVE").id


def _dated(store, root, days_ago, *, with_links=0):
    title = (TODAY - timedelta(days=days_ago)).strftime("%Y-%m-%d")
    fid = store.create(root, title).id
    for i in range(with_links):
        store.create(fid, f"link {i}", f"https://example.com/{i}")
    return fid


def _titles(store, root):
    return [n.title for n in store.get_children(root)]


def test_boundary_day_is_kept_older_is_deleted(store):
    root = _autosave_root(store)
    _dated(store, root, 30)
    old = _dated(store, root, 31, with_links=2)

    result = RetentionPruner(store).prune(root, 30, today=TODAY)

    assert _titles(store, root) == ["2024-05-31"]
    assert result.deleted == ["2024-05-30"]
    assert result.kept == 1
    with pytest.raises(StoreError):
        store.get(old)
    assert store.search("link 0") == []


def test_non_date_titles_and_bookmarks_are_never_deleted(store):
    root = _autosave_root(store)
    store.create(root, "Holiday 2001")
    store.create(root, "2001-01-01", "https://dated-bookmark.example/")
    store.create(root, "2001-1-1")
    store.create(root, "2001-01-01 extra")

    result = RetentionPruner(store).prune(root, 1, today=TODAY)

    assert result.deleted == []
    assert result.skipped == 3
    assert len(store.get_children(root)) == 4


def test_impossible_calendar_dates_are_skipped(store):
    root = _autosave_root(store)
    store.create(root, "2023-02-30")
    store.create(root, "2023-13-01")

    result = RetentionPruner(store).prune(root, 1, today=TODAY)

    assert result.deleted == []
    assert _titles(store, root) == ["2023-02-30", "2023-13-01"]


def test_near_date_titles_are_not_deleted(store):
    root = _autosave_root(store)
    store.create(root, "2020-01-01\n")
    store.create(root, "２０２０-01-01")
    store.create(root, "2020-0١-01")

    result = RetentionPruner(store).prune(root, 30, today=date(2024, 3, 15))

    assert result.deleted == []
    assert result.skipped == 3
    assert _titles(store, root) == ["2020-01-01\n", "２０２０-01-01", "2020-0١-01"]


def test_uses_injected_today_when_not_given(store):
    root = _autosave_root(store)
    _dated(store, root, 3)
    result = RetentionPruner(store, today=lambda: TODAY).prune(root, 2)
    assert len(result.deleted) == 1


def test_parse_folder_date():
    assert parse_folder_date("2024-02-29") == date(2024, 2, 29)
    assert parse_folder_date("2023-02-29") is None
    assert parse_folder_date(" 2024-02-01") is None
    assert parse_folder_date("") is None
    assert parse_folder_date("2024-02-01\n") is None
    assert parse_folder_date("２０２４-02-01") is None


class _BrokenRemoveStore(MemoryBookmarkStore):
    def remove_tree(self, node_id):
        raise StoreError("permission denied")


def test_store_errors_propagate():
    store = _BrokenRemoveStore()
    root = _autosave_root(store)
    _dated(store, root, 100)
    with pytest.raises(StoreError):
        RetentionPruner(store).prune(root, 30, today=TODAY)
