import threading

import pytest
from conftest import tab

from tabkeep.bookmarks import MemoryBookmarkStore
from tabkeep.errors import PartialReconciliationError, StoreError
from tabkeep.locking import locks_for
from tabkeep.model import Leaf, Policy
from tabkeep.reconcile import ReconciliationEngine

APPEND = Policy(overwrite=False)
OVERWRITE = Policy(overwrite=True)


def _folder(store, title="Saved"):
    return store.create("toolbar_____", title).id


def _content(store, folder_id):
    return {n.url: n.title for n in store.get_children(folder_id) if isinstance(n, Leaf)}


def _ids(store, folder_id):
    return {n.url: n.id for n in store.get_children(folder_id) if isinstance(n, Leaf)}


def _seed(store, folder_id, entries):
    for url, title in entries:
        store.create(folder_id, title, url)


def test_append_keeps_existing_and_adds_missing(store):
    fid = _folder(store)
    _seed(store, fid, [("https://a.com", "A"), ("https://b.com", "B")])
    tabs = [tab(1, "https://b.com", "B2"), tab(2, "https://c.com", "C")]

    result = ReconciliationEngine(store).reconcile(fid, tabs, APPEND)

    assert _content(store, fid) == {"https://a.com": "A", "https://b.com": "B", "https://c.com": "C"}
    assert (result.created, result.deleted, result.kept) == (1, 0, 2)
    assert result.saved == 2
    assert not result.skipped


def test_overwrite_converges_and_keeps_ids_of_unchanged_urls(store):
    fid = _folder(store)
    _seed(store, fid, [("https://a.com", "A"), ("https://b.com", "B")])
    before = _ids(store, fid)
    tabs = [tab(1, "https://b.com", "B2"), tab(2, "https://c.com", "C")]

    result = ReconciliationEngine(store).reconcile(fid, tabs, OVERWRITE)

    # b.com is kept as-is: same bookmark, title not refreshed to "B2".
    assert _content(store, fid) == {"https://b.com": "B", "https://c.com": "C"}
    assert _ids(store, fid)["https://b.com"] == before["https://b.com"]
    assert (result.created, result.deleted, result.kept) == (1, 1, 1)


def test_append_is_idempotent(store):
    fid = _folder(store)
    _seed(store, fid, [("https://x.com", "X")])
    tabs = [tab(1, "https://a.com"), tab(2, "https://b.com"), tab(3, "https://a.com")]
    engine = ReconciliationEngine(store)

    engine.reconcile(fid, tabs, APPEND)
    once = store.get_children(fid)
    second = engine.reconcile(fid, tabs, APPEND)

    assert store.get_children(fid) == once
    assert second.created == 0
    assert sorted(_content(store, fid)) == ["https://a.com", "https://b.com", "https://x.com"]


def test_overwrite_url_set_equals_filtered_tabs(store):
    fid = _folder(store)
    _seed(store, fid, [("https://old.com", "Old"), ("https://keep.com", "Keep")])
    tabs = [
        tab(1, "https://keep.com"),
        tab(2, "https://pinned.com", pinned=True),
        tab(3, "about:newtab"),
        tab(4, "https://new.com"),
    ]

    ReconciliationEngine(store).reconcile(fid, tabs, OVERWRITE)

    assert set(_content(store, fid)) == {"https://keep.com", "https://new.com"}


def test_save_pinned_policy_includes_pinned_tabs(store):
    fid = _folder(store)
    tabs = [tab(1, "https://pinned.com", pinned=True), tab(2, "https://a.com")]
    ReconciliationEngine(store).reconcile(fid, tabs, Policy(save_pinned=True))
    assert set(_content(store, fid)) == {"https://pinned.com", "https://a.com"}


@pytest.mark.parametrize("policy", [APPEND, OVERWRITE])
@pytest.mark.parametrize(
    "tabs",
    [
        [],
        [tab(1, "about:newtab")],
        [tab(1, "chrome://newtab/")],
        [tab(1, "https://pinned.com", pinned=True)],
    ],
)
def test_empty_snapshot_never_touches_folder(store, policy, tabs):
    fid = _folder(store)
    _seed(store, fid, [("https://a.com", "A"), ("https://b.com", "B")])
    before = store.get_children(fid)

    result = ReconciliationEngine(store).reconcile(fid, tabs, policy)

    assert result.skipped
    assert (result.created, result.deleted) == (0, 0)
    assert store.get_children(fid) == before


def test_duplicate_urls_append_first_title_overwrite_last_title(store):
    tabs = [tab(1, "https://a.com", "First"), tab(2, "https://a.com", "Second")]

    fid = _folder(store, "append")
    ReconciliationEngine(store).reconcile(fid, tabs, APPEND)
    assert _content(store, fid) == {"https://a.com": "First"}

    fid = _folder(store, "overwrite")
    ReconciliationEngine(store).reconcile(fid, tabs, OVERWRITE)
    assert _content(store, fid) == {"https://a.com": "Second"}


def test_append_preserves_existing_title_for_duplicate_url(store):
    fid = _folder(store)
    _seed(store, fid, [("https://a.com", "Stored")])
    ReconciliationEngine(store).reconcile(fid, [tab(1, "https://a.com", "Fresh")], APPEND)
    assert _content(store, fid) == {"https://a.com": "Stored"}


def test_overwrite_leaves_subfolders_alone(store):
    fid = _folder(store)
    sub = store.create(fid, "Window[1]")
    _seed(store, fid, [("https://a.com", "A")])

    ReconciliationEngine(store).reconcile(fid, [tab(1, "https://b.com")], OVERWRITE)

    assert store.get(sub.id).title == "Window[1]"
    assert set(_content(store, fid)) == {"https://b.com"}


class _FailingCreateStore(MemoryBookmarkStore):
    def __init__(self, fail_after: int):
        super().__init__()
        self.fail_after = fail_after
        self.armed = False

    def create(self, parent_id, title, url=None):
        if self.armed and url is not None:
            if self.fail_after == 0:
                raise StoreError("bookmark quota exceeded")
            self.fail_after -= 1
        return super().create(parent_id, title, url)


def test_failure_after_applied_steps_is_partial_and_not_rolled_back():
    store = _FailingCreateStore(fail_after=1)
    fid = _folder(store)
    _seed(store, fid, [("https://gone.com", "Gone")])
    store.armed = True
    tabs = [tab(1, "https://a.com"), tab(2, "https://b.com"), tab(3, "https://c.com")]

    with pytest.raises(PartialReconciliationError) as exc:
        ReconciliationEngine(store).reconcile(fid, tabs, OVERWRITE)

    assert exc.value.folder_id == fid
    assert exc.value.deleted == 1
    assert exc.value.created == 1
    assert isinstance(exc.value.__cause__, StoreError)
    assert set(_content(store, fid)) == {"https://a.com"}


def test_failure_before_any_change_is_a_plain_store_error():
    store = _FailingCreateStore(fail_after=0)
    fid = _folder(store)
    store.armed = True

    with pytest.raises(StoreError) as exc:
        ReconciliationEngine(store).reconcile(fid, [tab(1, "https://a.com")], APPEND)

    assert not isinstance(exc.value, PartialReconciliationError)


def test_missing_folder_raises_store_error(store):
    with pytest.raises(StoreError):
        ReconciliationEngine(store).reconcile("nope", [tab(1, "https://a.com")], APPEND)


def test_engines_built_separately_share_the_folder_lock(store):
    fid = _folder(store)
    done = threading.Event()

    def worker():
        ReconciliationEngine(store).reconcile(fid, [tab(1, "https://a.com", "A")], APPEND)
        done.set()

    with locks_for(store).hold(fid):
        t = threading.Thread(target=worker)
        t.start()
        assert not done.wait(0.2)
        assert _content(store, fid) == {}
    t.join(5)

    assert done.is_set()
    assert _content(store, fid) == {"https://a.com": "A"}
