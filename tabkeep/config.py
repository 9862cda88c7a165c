from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_opt(name: str, default: Optional[str]) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v


def _default_state_dir() -> str:
    base = os.getenv("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return str(Path(base) / "tabkeep")


@dataclass
class RuntimeConfig:
    """Where the stores live and how to log; the saved-tabs settings live in the state dir."""

    # Stores
    places_db: Optional[str] = None  # Firefox places.sqlite; None => in-memory bookmarks
    state_dir: str = ""
    browser: str = "firefox"  # firefox | chromium

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False

    def __post_init__(self) -> None:
        if not self.state_dir:
            self.state_dir = _default_state_dir()

    @property
    def settings_db(self) -> Path:
        return Path(self.state_dir).expanduser() / "settings.sqlite"

    @staticmethod
    def from_env() -> "RuntimeConfig":
        c = RuntimeConfig()
        c.places_db = _env_opt("TABKEEP_PLACES_DB", c.places_db)
        c.state_dir = _env_str("TABKEEP_STATE_DIR", c.state_dir)
        c.browser = _env_str("TABKEEP_BROWSER", c.browser)
        c.log_level = _env_str("TABKEEP_LOG_LEVEL", c.log_level)
        c.no_color = _env_bool("TABKEEP_NO_COLOR", c.no_color)
        return c

    @staticmethod
    def from_file(path: Path) -> "RuntimeConfig":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        c = RuntimeConfig.from_env()
        for k, v in data.items():
            if hasattr(c, k):
                setattr(c, k, v)
        return c


def load_config(config_path: Optional[str]) -> RuntimeConfig:
    if config_path:
        return RuntimeConfig.from_file(Path(config_path))
    return RuntimeConfig.from_env()
