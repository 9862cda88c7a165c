from __future__ import annotations

from typing import Dict, Optional, Sequence

from .bookmarks import BookmarkStore
from .errors import PartialReconciliationError, StoreError
from .locking import KeyedLock, locks_for
from .log import get_logger
from .model import Leaf, Policy, ReconcileResult, Tab
from .tabs import filter_tabs, is_empty_set

log = get_logger(__name__)


class ReconciliationEngine:
    """Makes a bookmark folder reflect a tab snapshot.

    Bookmarks are keyed by URL. Append only adds URLs the folder lacks; overwrite
    also deletes bookmarks whose URL is no longer open, while leaving bookmarks for
    still-open URLs untouched (same id, same title).

    Calls on the same folder are serialized through the store's shared
    ``locks_for(store)``, so separately built engines and schedulers in one
    process exclude each other. Nothing guards against other processes.
    """

    def __init__(self, store: BookmarkStore, *, locks: Optional[KeyedLock] = None):
        self.store = store
        self._locks = locks if locks is not None else locks_for(store)

    def reconcile(self, folder_id: str, tabs: Sequence[Tab], policy: Policy) -> ReconcileResult:
        tabs = list(tabs)
        if is_empty_set(tabs):
            log.info("No tabs to save into folder %s", folder_id)
            return ReconcileResult(skipped=True)
        eligible = filter_tabs(tabs, save_pinned=policy.save_pinned)
        if not eligible:
            log.info("No tabs to save into folder %s after filtering", folder_id)
            return ReconcileResult(skipped=True)

        with self._locks.hold(folder_id):
            result = self._apply(folder_id, eligible, policy)
        log.info(
            "Saved %d tab(s) to folder %s (created=%d deleted=%d kept=%d, %s)",
            result.saved,
            folder_id,
            result.created,
            result.deleted,
            result.kept,
            "overwrite" if policy.overwrite else "append",
        )
        return result

    def _apply(self, folder_id: str, eligible: Sequence[Tab], policy: Policy) -> ReconcileResult:
        result = ReconcileResult(saved=len(eligible))
        try:
            children = self.store.get_children(folder_id)
            existing = [n for n in children if isinstance(n, Leaf)]
            if policy.overwrite:
                self._overwrite(folder_id, eligible, existing, result)
            else:
                self._append(folder_id, eligible, existing, result)
        except StoreError as e:
            if result.created or result.deleted:
                log.error(
                    "Reconciliation of folder %s stopped after %d create(s) and %d delete(s): %s",
                    folder_id,
                    result.created,
                    result.deleted,
                    e,
                )
                raise PartialReconciliationError(
                    f"folder {folder_id} was only partially updated: {e}",
                    folder_id=folder_id,
                    created=result.created,
                    deleted=result.deleted,
                ) from e
            log.error("Reconciliation of folder %s failed: %s", folder_id, e)
            raise
        return result

    def _append(self, folder_id: str, eligible: Sequence[Tab], existing: Sequence[Leaf], result: ReconcileResult) -> None:
        known: Dict[str, str] = {}
        for node in existing:
            known[node.url] = node.title
        result.kept = len(existing)
        for tab in eligible:
            if tab.url in known:
                continue
            self.store.create(folder_id, tab.title, tab.url)
            known[tab.url] = tab.title
            result.created += 1

    def _overwrite(self, folder_id: str, eligible: Sequence[Tab], existing: Sequence[Leaf], result: ReconcileResult) -> None:
        desired: Dict[str, str] = {}
        for tab in eligible:
            desired[tab.url] = tab.title
        for node in existing:
            if node.url in desired:
                # Kept as-is; the stored title is not refreshed from the tab.
                del desired[node.url]
                result.kept += 1
                continue
            self.store.remove(node.id)
            result.deleted += 1
        for url, title in desired.items():
            self.store.create(folder_id, title, url)
            result.created += 1
