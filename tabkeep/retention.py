from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, List, Optional

from .bookmarks import BookmarkStore
from .errors import StoreError
from .log import get_logger
from .model import Folder

log = get_logger(__name__)

_DATE_TITLE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})")


@dataclass
class PruneResult:
    deleted: List[str] = field(default_factory=list)
    kept: int = 0
    skipped: int = 0


def parse_folder_date(title: str) -> Optional[date]:
    m = _DATE_TITLE.fullmatch(title or "")
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


class RetentionPruner:
    """Deletes dated (``YYYY-MM-DD``) sub-folders older than the retention window.

    A folder dated exactly ``keep_days`` ago is kept. Folders with any other title,
    including ones that look like dates but are not real calendar days, are left alone.
    """

    def __init__(self, store: BookmarkStore, *, today: Callable[[], date] = date.today):
        self.store = store
        self.today = today

    def prune(self, root_id: str, keep_days: int, *, today: Optional[date] = None) -> PruneResult:
        cutoff = (today or self.today()) - timedelta(days=int(keep_days))
        result = PruneResult()
        try:
            children = self.store.get_children(root_id)
            for node in children:
                if not isinstance(node, Folder):
                    continue
                day = parse_folder_date(node.title)
                if day is None:
                    result.skipped += 1
                    continue
                if day < cutoff:
                    log.info("Deleting autosave folder %s (%s), older than %s", node.title, node.id, cutoff)
                    self.store.remove_tree(node.id)
                    result.deleted.append(node.title)
                else:
                    result.kept += 1
        except StoreError as e:
            log.error("Retention cleanup of %s stopped after %d deletion(s): %s", root_id, len(result.deleted), e)
            raise
        if result.deleted:
            log.info("Retention cleanup removed %d folder(s) from %s", len(result.deleted), root_id)
        return result
