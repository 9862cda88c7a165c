from __future__ import annotations

import itertools
import json
import threading
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol, Sequence

from .errors import StoreError
from .model import Tab, Window

# Compared after normalize_tab_url(), so no trailing slashes and lower-case.
NEW_TAB_URLS = frozenset(
    {
        # Chromium family
        "chrome://newtab",
        "chrome-search://local-ntp/local-ntp.html",
        "chrome://startpage",
        "chrome://blank",
        "chrome://home",
        "edge://newtab",
        "brave://newtab",
        "opera://startpage",
        "vivaldi://newtab",
        # Firefox
        "about:newtab",
        "about:blank",
        "about:home",
        "",
    }
)


def normalize_tab_url(url: Optional[str]) -> str:
    return (url or "").rstrip("/").lower()


def is_new_tab_url(url: Optional[str]) -> bool:
    return normalize_tab_url(url) in NEW_TAB_URLS


def is_empty_set(tabs: Sequence[Tab]) -> bool:
    """True when there is effectively nothing open: no tabs, or one blank tab."""
    if len(tabs) == 0:
        return True
    return len(tabs) == 1 and is_new_tab_url(tabs[0].url)


def filter_tabs(tabs: Iterable[Tab], *, save_pinned: bool = False) -> List[Tab]:
    out: List[Tab] = []
    for tab in tabs:
        if tab.pinned and not save_pinned:
            continue
        if is_new_tab_url(tab.url):
            continue
        out.append(tab)
    return out


def closable_tabs(tabs: Iterable[Tab], *, close_pinned: bool = False) -> List[Tab]:
    return [t for t in tabs if not (t.pinned and not close_pinned) and not is_new_tab_url(t.url)]


class TabSource(Protocol):
    def query(self, *, current_window: bool = True) -> List[Tab]:
        ...

    def windows(self) -> List[Window]:
        ...

    def current_window(self) -> Optional[Window]:
        ...

    def create(self, window_id: int) -> Tab:
        """Open a blank tab in ``window_id``."""
        ...

    def remove(self, tab_ids: Iterable[int]) -> None:
        ...


class SnapshotTabSource:
    """Tab enumeration over a fixed set of windows (a snapshot, or a test fixture).

    The first focused window is the current one; without a focused window, the
    first window is.
    """

    def __init__(self, windows: Optional[Iterable[Window]] = None):
        self._lock = threading.Lock()
        self._windows: List[Window] = list(windows or [])
        max_id = max((t.id for w in self._windows for t in w.tabs), default=0)
        self._seq = itertools.count(max_id + 1)

    @classmethod
    def from_tabs(cls, tabs: Iterable[Tab], *, window_id: int = 1, title: Optional[str] = None) -> "SnapshotTabSource":
        tabs = [t if t.window_id is not None else Tab(t.id, t.url, t.title, t.pinned, window_id) for t in tabs]
        return cls([Window(id=window_id, title=title, focused=True, tabs=tabs)])

    @classmethod
    def from_json(cls, path: Path | str) -> "SnapshotTabSource":
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"cannot read tab snapshot {p}: {e}") from e
        return cls(parse_windows(data))

    def query(self, *, current_window: bool = True) -> List[Tab]:
        with self._lock:
            if current_window:
                w = self._current()
                return list(w.tabs) if w is not None else []
            return [t for w in self._windows for t in w.tabs]

    def windows(self) -> List[Window]:
        with self._lock:
            return [Window(id=w.id, title=w.title, focused=w.focused, tabs=list(w.tabs)) for w in self._windows]

    def current_window(self) -> Optional[Window]:
        with self._lock:
            return self._current()

    def create(self, window_id: int) -> Tab:
        with self._lock:
            w = self._window(window_id)
            tab = Tab(id=next(self._seq), url="about:newtab", title="New Tab", window_id=window_id)
            w.tabs.append(tab)
            return tab

    def remove(self, tab_ids: Iterable[int]) -> None:
        ids = set(tab_ids)
        with self._lock:
            for w in self._windows:
                w.tabs = [t for t in w.tabs if t.id not in ids]

    def _current(self) -> Optional[Window]:
        for w in self._windows:
            if w.focused:
                return w
        return self._windows[0] if self._windows else None

    def _window(self, window_id: int) -> Window:
        for w in self._windows:
            if w.id == window_id:
                return w
        raise StoreError(f"window not found: {window_id}")


def parse_windows(data: Any) -> List[Window]:
    """Accept either a list of windows (``{"id", "title", "tabs": [...]}``) or a flat tab list."""
    if isinstance(data, dict):
        data = data.get("windows", [])
    if not isinstance(data, list):
        raise StoreError("tab snapshot must be a list of windows or tabs")
    seq = itertools.count(1)
    if data and all(isinstance(x, dict) and "tabs" in x for x in data):
        windows = []
        for idx, w in enumerate(data, start=1):
            wid = int(w.get("id", idx))
            tabs = [_parse_tab(t, wid, next(seq)) for t in w.get("tabs") or []]
            windows.append(Window(id=wid, title=w.get("title"), focused=bool(w.get("focused", False)), tabs=tabs))
        return windows
    tabs = [_parse_tab(t, 1, next(seq)) for t in data]
    return [Window(id=1, focused=True, tabs=tabs)]


def _parse_tab(raw: Any, window_id: int, fallback_id: int) -> Tab:
    if not isinstance(raw, dict):
        raise StoreError(f"invalid tab entry: {raw!r}")
    return Tab(
        id=int(raw.get("id", fallback_id)),
        url=str(raw.get("url") or ""),
        title=str(raw.get("title") or ""),
        pinned=bool(raw.get("pinned", False)),
        window_id=int(raw.get("windowId", raw.get("window_id", window_id))),
    )


class JsonFileTabSource:
    """Reads a tab snapshot file afresh on every query, for long-running schedulers.

    Whatever keeps the file up to date owns the tabs, so closing and opening tabs
    is not supported here.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _snapshot(self) -> SnapshotTabSource:
        return SnapshotTabSource.from_json(self.path)

    def query(self, *, current_window: bool = True) -> List[Tab]:
        return self._snapshot().query(current_window=current_window)

    def windows(self) -> List[Window]:
        return self._snapshot().windows()

    def current_window(self) -> Optional[Window]:
        return self._snapshot().current_window()

    def create(self, window_id: int) -> Tab:
        raise StoreError(f"tab snapshot {self.path} is read-only")

    def remove(self, tab_ids: Iterable[int]) -> None:
        raise StoreError(f"tab snapshot {self.path} is read-only")
