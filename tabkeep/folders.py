from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Tuple

from .bookmarks import BookmarkStore
from .browser import BrowserFamily, root_folder_id
from .errors import NotFoundError, StoreError
from .locking import KeyedLock, locks_for
from .log import get_logger
from .model import Folder, FolderRef
from .settings import Settings

log = get_logger(__name__)

AUTOSAVE_ROOT_NAME = "AUTOSAVE"
DATE_FORMAT = "%Y-%m-%d"


def date_folder_name(day: date | datetime) -> str:
    if isinstance(day, datetime):
        day = day.date()
    return day.strftime(DATE_FORMAT)


class FolderResolver:
    """Maps logical folder references to concrete folder ids, creating folders when allowed.

    With ``scoped=True`` (the default) a lookup that has a parent only accepts hits
    that are direct children of that parent, so a same-named folder elsewhere in the
    tree is never mistaken for the target. ``scoped=False`` takes the first title
    match anywhere in the store.

    With ``serialize=True`` (the default) concurrent lookups of the same
    ``(parent, name)`` run one after another, so two callers that both miss cannot
    both create the folder. ``serialize=False`` allows that race.
    """

    def __init__(
        self,
        store: BookmarkStore,
        *,
        family: BrowserFamily = BrowserFamily.FIREFOX,
        scoped: bool = True,
        serialize: bool = True,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.family = family
        self.scoped = scoped
        self.serialize = serialize
        self._locks = locks if locks is not None else locks_for(store)

    def resolve(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        """Return the id of folder ``name``; create it under ``parent_id`` if missing.

        Without a parent a miss returns None and nothing is created.
        """
        ref, _created = self.lookup_or_create(name, parent_id)
        return ref.id if ref is not None else None

    def require(self, name: str, parent_id: Optional[str] = None) -> str:
        folder_id = self.resolve(name, parent_id)
        if folder_id is None:
            raise NotFoundError(f"bookmark folder not found: {name}")
        return folder_id

    def lookup_or_create(self, name: str, parent_id: Optional[str] = None) -> Tuple[Optional[FolderRef], bool]:
        if not self.serialize:
            return self._lookup_or_create(name, parent_id)
        with self._locks.hold((parent_id, name)):
            return self._lookup_or_create(name, parent_id)

    def _lookup_or_create(self, name: str, parent_id: Optional[str]) -> Tuple[Optional[FolderRef], bool]:
        try:
            hits = [n for n in self.store.search(name) if isinstance(n, Folder)]
            if self.scoped and parent_id is not None:
                hits = [n for n in hits if n.parent_id == str(parent_id)]
            if hits:
                log.info("Found folder %s with id %s", name, hits[0].id)
                return FolderRef(id=hits[0].id, name=name), False

            log.info("Folder %s not found", name)
            if parent_id is None:
                return None, False

            log.info("Creating folder %s under %s", name, parent_id)
            node = self.store.create(parent_id, name, None)
        except StoreError as e:
            log.error("Folder lookup for %s failed: %s", name, e)
            if parent_id is None:
                return None, False
            raise
        log.info("Created folder %s with id %s", name, node.id)
        return FolderRef(id=node.id, name=name), True

    def child_folder(self, parent_id: str, name: str, *, create: bool = True) -> Tuple[Optional[FolderRef], bool]:
        """Look ``name`` up among the direct children of ``parent_id`` only."""
        key = ("child", parent_id, name)
        if self.serialize:
            with self._locks.hold(key):
                return self._child_folder(parent_id, name, create)
        return self._child_folder(parent_id, name, create)

    def _child_folder(self, parent_id: str, name: str, create: bool) -> Tuple[Optional[FolderRef], bool]:
        for node in self.store.get_children(parent_id):
            if isinstance(node, Folder) and node.title == name:
                log.info("Reusing existing folder: %s (%s)", name, node.id)
                return FolderRef(id=node.id, name=name), False
        if not create:
            return None, False
        node = self.store.create(parent_id, name, None)
        log.info("Created folder %s (%s) under %s", name, node.id, parent_id)
        return FolderRef(id=node.id, name=name), True

    def resolve_root(self, preference: str, custom_id: Optional[str] = None) -> str:
        return root_folder_id(preference, custom_id, self.family)

    def manual_root(self, settings: Settings) -> str:
        return self.resolve_root(settings.rootfolder, settings.customrootfolder)

    def autosave_root(self, settings: Settings) -> Tuple[FolderRef, bool]:
        """The ``AUTOSAVE`` folder under the autosave-root preference, created if missing."""
        parent = self.resolve_root(settings.autosaverootfolder, settings.customautosaverootfolder)
        return self.ensure(AUTOSAVE_ROOT_NAME, parent)

    def dated_folder(self, parent_id: str, day: date | datetime) -> Tuple[FolderRef, bool]:
        return self.ensure(date_folder_name(day), parent_id)

    def ensure(self, name: str, parent_id: str) -> Tuple[FolderRef, bool]:
        """Like ``lookup_or_create`` with a parent, which always yields a folder."""
        ref, created = self.lookup_or_create(name, parent_id)
        if ref is None:
            raise StoreError(f"could not create folder {name} under {parent_id}")
        return ref, created

    def last_folder(self, settings: Settings) -> Optional[str]:
        """The remembered folder, if remembering is on and the folder still exists."""
        if not settings.rememberlast or not settings.lastfolder:
            return None
        try:
            node = self.store.get(settings.lastfolder)
        except StoreError as e:
            log.warning("Last used folder %s is gone: %s", settings.lastfolder, e)
            return None
        if not isinstance(node, Folder):
            return None
        return node.id

    def list_folders(self, parent_id: str) -> List[FolderRef]:
        try:
            children = self.store.get_children(parent_id)
        except StoreError as e:
            log.error("Failed to list folders of %s: %s", parent_id, e)
            return []
        return [FolderRef(id=n.id, name=n.title) for n in children if isinstance(n, Folder)]
