from __future__ import annotations

import base64
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Set

from .errors import StoreError
from .log import get_logger
from .model import BookmarkNode, Folder, Leaf

log = get_logger(__name__)

TYPE_LINK = 1
TYPE_FOLDER = 2

_ROOT_GUID_TO_NAME = {
    "root________": "root",
    "menu________": "menu",
    "toolbar_____": "toolbar",
    "tags________": "tags",
    "unfiled_____": "unfiled",
    "mobile______": "mobile",
}

_NODE_SELECT = """
    SELECT b.id, b.guid, b.type, b.title, b.parent, p.url, par.guid AS parent_guid
    FROM moz_bookmarks b
    LEFT JOIN moz_places p ON p.id = b.fk
    LEFT JOIN moz_bookmarks par ON par.id = b.parent
"""


class PlacesBookmarkStore:
    """Bookmark store on top of a Firefox ``places.sqlite`` file.

    Node ids are the ``moz_bookmarks.guid`` values, the same identifiers the
    WebExtension bookmarks API hands out (``toolbar_____`` and friends for roots).
    Firefox must be closed while the store writes; a locked database surfaces as
    :class:`StoreError`.
    """

    def __init__(self, db_path: Path | str, *, readonly: bool = False, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.readonly = readonly
        self.busy_timeout_ms = max(0, int(busy_timeout_ms))
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._has_foreign_count = False
        self._roots: Dict[str, str] = {}

    def __enter__(self) -> "PlacesBookmarkStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        mode = "ro" if self.readonly else "rw"
        uri = f"file:{self.db_path.as_posix()}?mode={mode}"
        timeout_s = max(0.1, self.busy_timeout_ms / 1000.0) if self.busy_timeout_ms > 0 else 0.1
        try:
            # Scheduler timers call in from their own threads; self._lock serializes access.
            self.conn = sqlite3.connect(uri, uri=True, timeout=timeout_s, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            if self.busy_timeout_ms > 0:
                self.conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if not self._has_column("moz_bookmarks", "guid"):
                self.close()
                raise StoreError(f"unsupported places database (no moz_bookmarks.guid): {self.db_path}")
            self._has_foreign_count = self._has_column("moz_places", "foreign_count")
            self._roots = self._discover_roots()
            log.debug("Opened %s (%d root folders)", self.db_path, len(self._roots))
        except sqlite3.Error as e:
            self.close()
            raise _store_error(e, self.db_path) from e

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def root_ids(self) -> Dict[str, str]:
        return dict(self._roots)

    def search(self, title: str) -> List[BookmarkNode]:
        with self._lock:
            try:
                c = self._cursor()
                rows = c.execute(
                    _NODE_SELECT + " WHERE b.title = ? AND b.type IN (1, 2) AND b.parent != 0 ORDER BY b.id",
                    (title,),
                ).fetchall()
                tags_root = self._row_id_or_none(self._roots.get("tags"))
                parent_map = self._parent_map() if tags_root is not None else {}
                out: List[BookmarkNode] = []
                for r in rows:
                    if tags_root is not None and _descends_from(int(r["id"]), tags_root, parent_map):
                        continue
                    out.append(_node(r))
                return out
            except sqlite3.Error as e:
                raise _store_error(e, self.db_path) from e

    def get(self, node_id: str) -> BookmarkNode:
        with self._lock:
            try:
                row = self._cursor().execute(_NODE_SELECT + " WHERE b.guid = ?", (node_id,)).fetchone()
            except sqlite3.Error as e:
                raise _store_error(e, self.db_path) from e
            if row is None:
                raise StoreError(f"bookmark node not found: {node_id}")
            return _node(row)

    def get_children(self, folder_id: str) -> List[BookmarkNode]:
        with self._lock:
            try:
                row_id = self._require_folder(folder_id)
                rows = self._cursor().execute(
                    _NODE_SELECT + " WHERE b.parent = ? AND b.type IN (1, 2) ORDER BY b.position, b.id",
                    (row_id,),
                ).fetchall()
                return [_node(r) for r in rows]
            except sqlite3.Error as e:
                raise _store_error(e, self.db_path) from e

    def create(self, parent_id: str, title: str, url: Optional[str] = None) -> BookmarkNode:
        with self._lock:
            self._assert_writable()
            try:
                parent_row = self._require_folder(parent_id)
                name = title or ""
                if url is None:
                    row_id = self._insert_bookmark(btype=TYPE_FOLDER, fk=None, parent_id=parent_row, title=name)
                else:
                    if not url:
                        raise StoreError("bookmark URL cannot be empty")
                    place_id = self._ensure_place(url, name)
                    row_id = self._insert_bookmark(btype=TYPE_LINK, fk=place_id, parent_id=parent_row, title=name)
                self.conn.commit()
                row = self._cursor().execute(_NODE_SELECT + " WHERE b.id = ?", (row_id,)).fetchone()
                log.debug("Inserted bookmark row %d under %s", row_id, parent_id)
                return _node(row)
            except sqlite3.Error as e:
                self._rollback()
                raise _store_error(e, self.db_path) from e

    def remove(self, node_id: str) -> None:
        with self._lock:
            self._assert_writable()
            try:
                row = self._require_removable(node_id)
                row_id = int(row["id"])
                if int(row["type"] or 0) == TYPE_FOLDER:
                    child = self._cursor().execute(
                        "SELECT 1 FROM moz_bookmarks WHERE parent = ? LIMIT 1", (row_id,)
                    ).fetchone()
                    if child is not None:
                        raise StoreError(f"cannot remove non-empty folder: {node_id}")
                self._delete_rows([row_id])
                self._compact_positions(int(row["parent"] or 0), int(row["position"] or 0))
                self.conn.commit()
            except sqlite3.Error as e:
                self._rollback()
                raise _store_error(e, self.db_path) from e

    def remove_tree(self, node_id: str) -> None:
        with self._lock:
            self._assert_writable()
            try:
                row = self._require_removable(node_id)
                row_id = int(row["id"])
                parent_map = self._parent_map()
                doomed = [bid for bid in parent_map if _descends_from(bid, row_id, parent_map)]
                self._delete_rows(doomed)
                log.debug("Removing %s and %d descendant row(s)", node_id, len(doomed) - 1)
                self._compact_positions(int(row["parent"] or 0), int(row["position"] or 0))
                self.conn.commit()
            except sqlite3.Error as e:
                self._rollback()
                raise _store_error(e, self.db_path) from e

    def validate_integrity(self) -> None:
        with self._lock:
            c = self._cursor()
            row = c.execute("PRAGMA integrity_check").fetchone()
            status = str(row[0]) if row is not None else ""
            if status.lower() != "ok":
                raise StoreError(f"sqlite integrity_check failed: {status or '<empty>'}")

    def _delete_rows(self, row_ids: List[int]) -> None:
        if not row_ids:
            return
        c = self._cursor()
        fks: Set[int] = set()
        for bid in row_ids:
            r = c.execute("SELECT fk FROM moz_bookmarks WHERE id = ?", (bid,)).fetchone()
            if r is not None and r["fk"] is not None:
                fks.add(int(r["fk"]))
            c.execute("DELETE FROM moz_bookmarks WHERE id = ?", (bid,))
        if self._has_foreign_count:
            for fk in fks:
                c.execute(
                    """
                    UPDATE moz_places
                    SET foreign_count = (SELECT COUNT(*) FROM moz_bookmarks b WHERE b.fk = moz_places.id)
                    WHERE id = ?
                    """,
                    (fk,),
                )

    def _compact_positions(self, parent_id: int, removed_position: int) -> None:
        c = self._cursor()
        c.execute(
            "UPDATE moz_bookmarks SET position = position - 1 WHERE parent = ? AND position > ?",
            (parent_id, removed_position),
        )
        self._touch_folder(parent_id)

    def _parent_map(self) -> Dict[int, int]:
        rows = self._cursor().execute("SELECT id, parent FROM moz_bookmarks").fetchall()
        return {int(r["id"]): int(r["parent"] or 0) for r in rows}

    def _discover_roots(self) -> Dict[str, str]:
        rows = self._cursor().execute(
            "SELECT guid FROM moz_bookmarks WHERE guid IN (?, ?, ?, ?, ?, ?)",
            tuple(_ROOT_GUID_TO_NAME.keys()),
        ).fetchall()
        out: Dict[str, str] = {}
        for r in rows:
            name = _ROOT_GUID_TO_NAME.get(str(r["guid"]))
            if name:
                out[name] = str(r["guid"])
        return out

    def _row_id_or_none(self, guid: Optional[str]) -> Optional[int]:
        if not guid:
            return None
        row = self._cursor().execute("SELECT id FROM moz_bookmarks WHERE guid = ?", (guid,)).fetchone()
        return int(row["id"]) if row else None

    def _ensure_place(self, url: str, title: str) -> int:
        c = self._cursor()
        row = c.execute("SELECT id, title FROM moz_places WHERE url = ? LIMIT 1", (url,)).fetchone()
        if row:
            pid = int(row["id"])
            if title and not (row["title"] or ""):
                c.execute("UPDATE moz_places SET title = ? WHERE id = ?", (title, pid))
            return pid
        cols = ["url", "title"]
        vals: List[object] = [url, title]
        if self._has_column("moz_places", "guid"):
            cols.append("guid")
            vals.append(_new_guid())
        placeholders = ", ".join(["?"] * len(vals))
        c.execute(f"INSERT INTO moz_places ({', '.join(cols)}) VALUES ({placeholders})", vals)
        return int(c.lastrowid)

    def _insert_bookmark(self, *, btype: int, fk: Optional[int], parent_id: int, title: str) -> int:
        c = self._cursor()
        now = _now_us()
        pos_row = c.execute(
            "SELECT COALESCE(MAX(position), -1) AS p FROM moz_bookmarks WHERE parent = ?", (parent_id,)
        ).fetchone()
        position = int(pos_row["p"]) + 1
        c.execute(
            "INSERT INTO moz_bookmarks (type, fk, parent, position, title, dateAdded, lastModified, guid) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (btype, fk, parent_id, position, title, now, now, _new_guid()),
        )
        row_id = int(c.lastrowid)
        if fk is not None and self._has_foreign_count:
            c.execute("UPDATE moz_places SET foreign_count = foreign_count + 1 WHERE id = ?", (fk,))
        self._touch_folder(parent_id)
        return row_id

    def _touch_folder(self, folder_id: int) -> None:
        if not folder_id:
            return
        self._cursor().execute("UPDATE moz_bookmarks SET lastModified = ? WHERE id = ?", (_now_us(), folder_id))

    def _require_folder(self, folder_id: str) -> int:
        row = self._cursor().execute("SELECT id, type FROM moz_bookmarks WHERE guid = ?", (folder_id,)).fetchone()
        if not row:
            raise StoreError(f"folder id not found: {folder_id}")
        if int(row["type"] or 0) != TYPE_FOLDER:
            raise StoreError(f"id is not a folder: {folder_id}")
        return int(row["id"])

    def _require_removable(self, node_id: str) -> sqlite3.Row:
        if node_id in self._roots.values():
            raise StoreError(f"cannot remove root folder: {node_id}")
        row = self._cursor().execute(
            "SELECT id, type, parent, position FROM moz_bookmarks WHERE guid = ?", (node_id,)
        ).fetchone()
        if not row:
            raise StoreError(f"bookmark node not found: {node_id}")
        return row

    def _assert_writable(self) -> None:
        if self.readonly:
            raise StoreError("database opened in readonly mode")

    def _rollback(self) -> None:
        if self.conn is not None:
            self.conn.rollback()

    def _has_column(self, table_name: str, column_name: str) -> bool:
        rows = self._cursor().execute(f"PRAGMA table_info({table_name})").fetchall()
        return any(str(r[1]) == column_name for r in rows)

    def _cursor(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise StoreError("database is not open")
        return self.conn.cursor()


def _node(row: sqlite3.Row) -> BookmarkNode:
    guid = str(row["guid"])
    parent = row["parent_guid"]
    parent_id = str(parent) if parent is not None else None
    title = row["title"] or ""
    if int(row["type"] or 0) == TYPE_FOLDER:
        return Folder(id=guid, parent_id=parent_id, title=title)
    return Leaf(id=guid, parent_id=parent_id, title=title, url=row["url"] or "")


def _descends_from(node_id: int, ancestor_id: int, parent_map: Dict[int, int]) -> bool:
    current = node_id
    seen = set()
    while current and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        current = parent_map.get(current, 0)
    return False


def _store_error(e: sqlite3.Error, db_path: Path) -> StoreError:
    msg = str(e).strip()
    if "locked" in msg.lower() or "busy" in msg.lower():
        return StoreError(f"Firefox database is locked ({db_path}). Close Firefox and rerun.")
    return StoreError(f"places database error ({db_path}): {msg}")


def _now_us() -> int:
    return int(time.time() * 1_000_000)


def _new_guid() -> str:
    # Firefox GUIDs are 12-char URL-safe strings.
    return base64.urlsafe_b64encode(os.urandom(9)).decode("ascii").rstrip("=")
