from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from .log import get_logger

log = get_logger(__name__)


class BrowserFamily(str, Enum):
    FIREFOX = "firefox"
    CHROMIUM = "chromium"


ROOT_PREFERENCES = ("default", "toolbar", "other", "menu", "custom")

# Well-known root folder ids, as the browsers' bookmark APIs expose them.
_ROOT_IDS: Dict[BrowserFamily, Dict[str, str]] = {
    BrowserFamily.FIREFOX: {
        "root": "root________",
        "menu": "menu________",
        "toolbar": "toolbar_____",
        "unfiled": "unfiled_____",
        "mobile": "mobile______",
    },
    BrowserFamily.CHROMIUM: {
        "root": "0",
        "toolbar": "1",
        "unfiled": "2",
        "mobile": "3",
    },
}

_ROOT_LABELS: Dict[BrowserFamily, Dict[str, str]] = {
    BrowserFamily.FIREFOX: {
        "menu": "Bookmarks Menu",
        "toolbar": "Bookmarks Toolbar",
        "unfiled": "Other Bookmarks",
        "mobile": "Mobile Bookmarks",
    },
    BrowserFamily.CHROMIUM: {
        "toolbar": "Bookmarks bar",
        "unfiled": "Other bookmarks",
        "mobile": "Mobile bookmarks",
    },
}


def parse_family(value: str | BrowserFamily | None) -> BrowserFamily:
    if isinstance(value, BrowserFamily):
        return value
    v = (value or "").strip().lower()
    if v in ("chrome", "chromium", "edge", "brave", "opera", "vivaldi"):
        return BrowserFamily.CHROMIUM
    return BrowserFamily.FIREFOX


def root_ids(family: BrowserFamily) -> Dict[str, str]:
    return dict(_ROOT_IDS[family])


def root_labels(family: BrowserFamily) -> Dict[str, str]:
    return dict(_ROOT_LABELS[family])


def toolbar_id(family: BrowserFamily) -> str:
    return _ROOT_IDS[family]["toolbar"]


def other_bookmarks_id(family: BrowserFamily) -> str:
    return _ROOT_IDS[family]["unfiled"]


def menu_id(family: BrowserFamily) -> Optional[str]:
    return _ROOT_IDS[family].get("menu")


def root_folder_id(preference: str, custom_id: Optional[str], family: BrowserFamily) -> str:
    """Map a root-folder preference to a concrete folder id.

    Never raises: a ``custom`` preference without an id, an unknown preference, or
    ``menu`` on a browser without a bookmarks menu all fall back to the toolbar.
    """
    pref = (preference or "default").strip().lower()
    if pref == "custom":
        if custom_id:
            return str(custom_id)
        log.warning("Custom root folder selected but no folder id stored; using default root.")
        return toolbar_id(family)
    if pref in ("default", "toolbar"):
        return toolbar_id(family)
    if pref == "other":
        return other_bookmarks_id(family)
    if pref == "menu":
        mid = menu_id(family)
        if mid is not None:
            return mid
        log.warning("Bookmarks menu is not available on %s; using default root.", family.value)
        return toolbar_id(family)
    log.warning("Unknown root folder preference %r; using default root.", preference)
    return toolbar_id(family)

