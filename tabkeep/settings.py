from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from .browser import ROOT_PREFERENCES
from .errors import StoreError, ValidationError
from .kvstore import Changes, KeyValueStore
from .log import get_logger
from .model import Policy

log = get_logger(__name__)

SETTINGS_KEY = "settings"

PREFIX_TYPES = ("custom", "date", "datetime", "windowtitle")
DEFAULT_INTERVAL = "5"
MIN_KEEP_DAYS = 1
MAX_KEEP_DAYS = 366

_NULLABLE = {"customrootfolder", "customautosaverootfolder", "lastfolder"}


class Settings(BaseModel):
    """The persisted settings record. Field names are the stored keys."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    autosave: bool = False
    interval: str = DEFAULT_INTERVAL
    overwrite: bool = False
    savepinned: bool = False
    rootfolder: str = "default"
    customrootfolder: Optional[str] = None
    autosaverootfolder: str = "default"
    customautosaverootfolder: Optional[str] = None
    lastfolder: Optional[str] = None
    rememberlast: bool = True
    closepinned: bool = False
    closetabs: bool = False
    prefixenabled: bool = False
    prefixtype: str = "custom"
    prefixcustom: str = ""
    autosavekeeplimit: bool = False
    autosavekeepdays: int = 30

    @field_validator("interval", mode="before")
    @classmethod
    def _clamp_interval(cls, v: Any) -> str:
        try:
            n = int(str(v).strip())
        except (TypeError, ValueError):
            log.warning("Invalid autosave interval %r; using %s minutes.", v, DEFAULT_INTERVAL)
            return DEFAULT_INTERVAL
        if n < 1:
            log.warning("Autosave interval %r is below one minute; using %s minutes.", v, DEFAULT_INTERVAL)
            return DEFAULT_INTERVAL
        return str(n)

    @field_validator("autosavekeepdays", mode="before")
    @classmethod
    def _clamp_keep_days(cls, v: Any) -> int:
        try:
            n = int(str(v).strip())
        except (TypeError, ValueError):
            log.warning("Invalid retention days %r; using %d.", v, MIN_KEEP_DAYS)
            return MIN_KEEP_DAYS
        if n < MIN_KEEP_DAYS or n > MAX_KEEP_DAYS:
            clamped = min(MAX_KEEP_DAYS, max(MIN_KEEP_DAYS, n))
            log.warning("Retention days %d out of range; using %d.", n, clamped)
            return clamped
        return n

    @field_validator("rootfolder", "autosaverootfolder", mode="before")
    @classmethod
    def _known_root(cls, v: Any) -> str:
        pref = str(v or "").strip().lower()
        if pref not in ROOT_PREFERENCES:
            log.warning("Unknown root folder preference %r; using default.", v)
            return "default"
        return pref

    @field_validator("prefixtype", mode="before")
    @classmethod
    def _known_prefix(cls, v: Any) -> str:
        kind = str(v or "").strip().lower()
        if kind not in PREFIX_TYPES:
            log.warning("Unknown folder prefix type %r; using custom.", v)
            return "custom"
        return kind

    @field_validator("customrootfolder", "customautosaverootfolder", "lastfolder", mode="before")
    @classmethod
    def _folder_id(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        return str(v)

    @property
    def interval_minutes(self) -> int:
        return int(self.interval)

    def policy(self) -> Policy:
        return Policy(
            overwrite=self.overwrite,
            save_pinned=self.savepinned,
            remember_last=self.rememberlast,
            close_tabs_after_save=self.closetabs,
        )

    @classmethod
    def from_record(cls, raw: Optional[Dict[str, Any]]) -> "Settings":
        """Build settings from a stored record, falling back to defaults field by field."""
        if not isinstance(raw, dict):
            if raw is not None:
                log.warning("Stored settings record is not a mapping; using defaults.")
            return cls()
        data = {k: v for k, v in raw.items() if k in cls.model_fields and (v is not None or k in _NULLABLE)}
        while True:
            try:
                return cls(**data)
            except PydanticValidationError as e:
                bad = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
                if not bad or not bad & set(data):
                    raise ValidationError(str(e)) from e
                for k in bad:
                    log.warning("Invalid stored setting %s=%r; using default.", k, data.pop(k, None))

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump()


class SettingsRepository:
    """Reads and writes the settings record; every read goes to the store."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._wrappers: Dict[Callable[[Settings], None], Callable[[Changes], None]] = {}
        self._lock = threading.Lock()

    def load(self) -> Settings:
        try:
            raw = self.store.get(SETTINGS_KEY)
        except StoreError as e:
            log.error("Could not read settings, using defaults: %s", e)
            return Settings()
        return Settings.from_record(raw)

    def save(self, settings: Settings) -> Settings:
        record = settings.to_record()
        if not settings.rememberlast:
            record["lastfolder"] = None
        try:
            self.store.set(SETTINGS_KEY, record)
        except StoreError as e:
            log.error("Could not save settings: %s", e)
            raise
        log.debug("Settings saved: %s", record)
        return Settings.from_record(record)

    def update(self, **changes: Any) -> Settings:
        unknown = sorted(k for k in changes if k not in Settings.model_fields)
        if unknown:
            raise ValidationError(f"unknown setting(s): {', '.join(unknown)}")
        merged = self.load().to_record()
        merged.update(changes)
        try:
            settings = Settings(**merged)
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e
        return self.save(settings)

    def save_last_folder(self, folder_id: Optional[str]) -> None:
        try:
            raw = self.store.get(SETTINGS_KEY)
            record = dict(raw) if isinstance(raw, dict) else {}
            record["lastfolder"] = folder_id
            self.store.set(SETTINGS_KEY, record)
        except StoreError as e:
            log.error("Could not remember last folder %s: %s", folder_id, e)
            raise
        log.info("Last folder saved: %s", folder_id)

    def add_change_listener(self, callback: Callable[[Settings], None]) -> None:
        """Call ``callback`` with fresh settings whenever the settings record changes."""
        with self._lock:
            wrapper = self._wrappers.get(callback)
            if wrapper is None:

                def wrapper(changes: Changes) -> None:
                    if SETTINGS_KEY not in changes:
                        return
                    callback(self.load())

                self._wrappers[callback] = wrapper
        if not self.store.has_listener(wrapper):
            self.store.add_listener(wrapper)

    def has_change_listener(self, callback: Callable[[Settings], None]) -> bool:
        wrapper = self._wrappers.get(callback)
        return wrapper is not None and self.store.has_listener(wrapper)

    def remove_change_listener(self, callback: Callable[[Settings], None]) -> None:
        with self._lock:
            wrapper = self._wrappers.pop(callback, None)
        if wrapper is not None:
            self.store.remove_listener(wrapper)
