from __future__ import annotations

import itertools
import threading
from typing import Dict, List, Optional, Protocol

from .browser import BrowserFamily, root_ids, root_labels
from .errors import StoreError
from .log import get_logger
from .model import BookmarkNode, Folder, Leaf

log = get_logger(__name__)


class BookmarkStore(Protocol):
    """Hierarchical bookmark store: folders and leaf bookmarks with stable ids."""

    def search(self, title: str) -> List[BookmarkNode]:
        """Return every node whose title equals ``title``, in store order."""
        ...

    def get(self, node_id: str) -> BookmarkNode:
        ...

    def get_children(self, folder_id: str) -> List[BookmarkNode]:
        ...

    def create(self, parent_id: str, title: str, url: Optional[str] = None) -> BookmarkNode:
        """Create a leaf bookmark, or a folder when ``url`` is None."""
        ...

    def remove(self, node_id: str) -> None:
        """Remove a leaf or an empty folder."""
        ...

    def remove_tree(self, node_id: str) -> None:
        """Remove a folder together with everything below it."""
        ...

    def root_ids(self) -> Dict[str, str]:
        ...


class MemoryBookmarkStore:
    """In-process bookmark store laid out like a browser's bookmark tree."""

    def __init__(self, family: BrowserFamily = BrowserFamily.FIREFOX):
        self.family = family
        self._lock = threading.RLock()
        self._nodes: Dict[str, BookmarkNode] = {}
        self._children: Dict[str, List[str]] = {}
        self._roots = root_ids(family)
        self._seq = itertools.count(100)

        top = self._roots["root"]
        self._nodes[top] = Folder(id=top, parent_id=None, title="")
        self._children[top] = []
        labels = root_labels(family)
        for name, rid in self._roots.items():
            if rid == top:
                continue
            self._nodes[rid] = Folder(id=rid, parent_id=top, title=labels.get(name, name))
            self._children[rid] = []
            self._children[top].append(rid)

    def root_ids(self) -> Dict[str, str]:
        return dict(self._roots)

    def search(self, title: str) -> List[BookmarkNode]:
        with self._lock:
            return [n for n in self._nodes.values() if n.title == title and n.parent_id is not None]

    def get(self, node_id: str) -> BookmarkNode:
        with self._lock:
            node = self._nodes.get(str(node_id))
            if node is None:
                raise StoreError(f"bookmark node not found: {node_id}")
            return node

    def get_children(self, folder_id: str) -> List[BookmarkNode]:
        with self._lock:
            self._require_folder(folder_id)
            return [self._nodes[cid] for cid in self._children[str(folder_id)]]

    def create(self, parent_id: str, title: str, url: Optional[str] = None) -> BookmarkNode:
        with self._lock:
            self._require_folder(parent_id)
            new_id = str(next(self._seq))
            node: BookmarkNode
            if url is None:
                node = Folder(id=new_id, parent_id=str(parent_id), title=title or "")
                self._children[new_id] = []
            else:
                node = Leaf(id=new_id, parent_id=str(parent_id), title=title or "", url=url)
            self._nodes[new_id] = node
            self._children[str(parent_id)].append(new_id)
            return node

    def remove(self, node_id: str) -> None:
        with self._lock:
            node = self.get(node_id)
            self._require_removable(node)
            if isinstance(node, Folder) and self._children.get(node.id):
                raise StoreError(f"cannot remove non-empty folder: {node_id}")
            self._drop(node)

    def remove_tree(self, node_id: str) -> None:
        with self._lock:
            node = self.get(node_id)
            self._require_removable(node)
            self._drop(node)

    def _drop(self, node: BookmarkNode) -> None:
        for cid in list(self._children.get(node.id, [])):
            self._drop(self._nodes[cid])
        self._children.pop(node.id, None)
        self._nodes.pop(node.id, None)
        if node.parent_id is not None:
            siblings = self._children.get(node.parent_id, [])
            if node.id in siblings:
                siblings.remove(node.id)

    def _require_folder(self, folder_id: str) -> None:
        node = self._nodes.get(str(folder_id))
        if node is None:
            raise StoreError(f"folder id not found: {folder_id}")
        if not isinstance(node, Folder):
            raise StoreError(f"id is not a folder: {folder_id}")

    def _require_removable(self, node: BookmarkNode) -> None:
        if node.id in self._roots.values():
            raise StoreError(f"cannot remove root folder: {node.id}")
