from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt
from pydantic import ValidationError as PydanticValidationError

from .errors import StoreError
from .kvstore import KeyValueStore
from .log import get_logger

log = get_logger(__name__)

STATS_KEY = "stats"


class Stats(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_saves: NonNegativeInt = Field(0, alias="totalSaves")
    tabs_saved: NonNegativeInt = Field(0, alias="tabsSaved")
    auto_saves: NonNegativeInt = Field(0, alias="autoSaves")
    folders_created: NonNegativeInt = Field(0, alias="foldersCreated")
    last_save: Optional[str] = Field(None, alias="lastSave")
    install_date: Optional[str] = Field(None, alias="installDate")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StatsAccumulator:
    """Usage counters kept next to the settings record.

    Read-modify-write is serialized within this process only; another process
    writing the same store can still lose an update.
    """

    def __init__(self, store: KeyValueStore, *, clock: Callable[[], str] = _utc_now_iso):
        self.store = store
        self.clock = clock
        self._lock = threading.Lock()

    def read(self) -> Stats:
        try:
            raw = self.store.get(STATS_KEY)
        except StoreError as e:
            log.error("Could not read statistics: %s", e)
            return Stats()
        if not isinstance(raw, dict):
            return Stats()
        try:
            return Stats.model_validate(raw)
        except PydanticValidationError as e:
            log.warning("Discarding unreadable statistics record: %s", e)
            return Stats()

    def record(self, *, tabs_saved: int, folders_created: int = 0, auto_triggered: bool = False) -> Stats:
        with self._lock:
            stats = self.read()
            now = self.clock()
            if not stats.install_date:
                stats.install_date = now
            stats.total_saves += 1
            stats.tabs_saved += max(0, int(tabs_saved))
            stats.folders_created += max(0, int(folders_created))
            if auto_triggered:
                stats.auto_saves += 1
            stats.last_save = now
            self._write(stats)
        log.debug("Statistics updated: %s", stats.to_record())
        return stats

    def reset(self) -> Stats:
        with self._lock:
            stats = Stats(install_date=self.clock())
            self._write(stats)
        log.info("Statistics reset")
        return stats

    def _write(self, stats: Stats) -> None:
        try:
            self.store.set(STATS_KEY, stats.to_record())
        except StoreError as e:
            log.error("Could not write statistics: %s", e)
            raise
