from __future__ import annotations

import argparse
import json
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import __version__
from .alarms import ThreadAlarms
from .bookmarks import BookmarkStore, MemoryBookmarkStore
from .browser import parse_family
from .config import RuntimeConfig, load_config
from .errors import TabkeepError
from .folders import AUTOSAVE_ROOT_NAME, FolderResolver
from .kvstore import SqliteKeyValueStore
from .log import LogConfig, get_logger, setup_logging
from .model import Policy
from .places_db import PlacesBookmarkStore
from .reconcile import ReconciliationEngine
from .retention import RetentionPruner
from .save import SaveService
from .scheduler import AutosaveScheduler
from .settings import SettingsRepository
from .stats import StatsAccumulator
from .tabs import JsonFileTabSource, SnapshotTabSource, TabSource

log = get_logger(__name__)

SETTINGS_POLL_SECONDS = 5.0

# Taken verbatim, so a custom prefix like "2024" stays text.
_TEXT_SETTINGS = {"prefixcustom", "interval"}


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="tabkeep",
        description="Save open browser tabs into bookmark folders, by hand or on a schedule.",
    )
    p.add_argument("-V", "--version", action="version", version=f"tabkeep {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    p.add_argument("--places-db", default=None, help="Firefox places.sqlite to write bookmarks into.")
    p.add_argument("--backup-places", action="store_true", help="Copy places.sqlite into the state dir before writing.")
    sub = p.add_subparsers(dest="cmd", required=True)

    sv = sub.add_parser("save", help="Save the current window's tabs into one folder.")
    sv.add_argument("--tabs", required=True, help="JSON snapshot of the open windows and tabs.")
    _add_target_args(sv)
    mode = sv.add_mutually_exclusive_group()
    mode.add_argument("--overwrite", dest="overwrite", action="store_true", default=None, help="Make the folder match the tabs exactly.")
    mode.add_argument("--append", dest="overwrite", action="store_false", help="Only add bookmarks the folder lacks.")
    sv.add_argument("--save-pinned", action="store_true", default=None, help="Also save pinned tabs.")
    sv.add_argument("--close", action="store_true", default=None, help="Close the saved tabs afterwards.")

    sa = sub.add_parser("save-all", help="Save every window into its own sub-folder.")
    sa.add_argument("--tabs", required=True, help="JSON snapshot of the open windows and tabs.")
    _add_target_args(sa)

    au = sub.add_parser("autosave", help="Run one scheduled save now, even if autosave is off.")
    au.add_argument("--tabs", required=True, help="JSON snapshot of the open windows and tabs.")

    pr = sub.add_parser("prune", help="Delete dated autosave folders past the retention window.")
    pr.add_argument("--days", type=int, default=None, help="Days to keep (default: the autosavekeepdays setting).")

    st = sub.add_parser("stats", help="Print usage statistics.")
    st.add_argument("--reset", action="store_true", help="Zero the counters first.")

    se = sub.add_parser("settings", help="Print the settings, after applying KEY=VALUE changes.")
    se.add_argument("changes", nargs="*", metavar="KEY=VALUE")

    ru = sub.add_parser("run", help="Keep the autosave alarm armed until interrupted.")
    ru.add_argument("--tabs", required=True, help="JSON snapshot file, re-read at every save.")

    args = p.parse_args(argv)
    cfg = load_config(args.config)
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    if args.places_db:
        cfg.places_db = args.places_db
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))

    try:
        if args.cmd == "stats":
            return _cmd_stats(args, cfg)
        if args.cmd == "settings":
            return _cmd_settings(args, cfg)
        return _with_bookmarks(args, cfg)
    except TabkeepError as e:
        log.error("%s", e)
        return 1


def _add_target_args(sp: argparse.ArgumentParser) -> None:
    g = sp.add_mutually_exclusive_group()
    g.add_argument("--folder", default=None, help="Folder name, looked up or created under the root folder.")
    g.add_argument("--folder-id", default=None, help="Existing bookmark folder id.")


def _with_bookmarks(args, cfg: RuntimeConfig) -> int:
    if args.cmd in ("save", "save-all", "autosave", "run") and not Path(args.tabs).exists():
        log.error("Tab snapshot not found: %s", args.tabs)
        return 2

    if not cfg.places_db:
        log.warning("No places database configured; bookmarks are kept in memory and lost on exit.")
        return _dispatch(args, cfg, MemoryBookmarkStore(parse_family(cfg.browser)))

    places = Path(cfg.places_db).expanduser()
    if not places.exists():
        log.error("Places database not found: %s", places)
        return 2
    if args.backup_places:
        _backup_places(places, Path(cfg.state_dir).expanduser())
    with PlacesBookmarkStore(places) as store:
        return _dispatch(args, cfg, store)


def _dispatch(args, cfg: RuntimeConfig, store: BookmarkStore) -> int:
    if args.cmd == "save":
        return _cmd_save(args, cfg, store)
    if args.cmd == "save-all":
        return _cmd_save_all(args, cfg, store)
    if args.cmd == "autosave":
        return _cmd_autosave(args, cfg, store)
    if args.cmd == "prune":
        return _cmd_prune(args, cfg, store)
    if args.cmd == "run":
        return _cmd_run(args, cfg, store)
    return 2


def _cmd_save(args, cfg: RuntimeConfig, store: BookmarkStore) -> int:
    settings = SettingsRepository(SqliteKeyValueStore(cfg.settings_db))
    svc = _save_service(cfg, store, settings, SnapshotTabSource.from_json(args.tabs))
    policy = _policy_overrides(settings.load().policy(), args)
    outcome = svc.save_window(folder_id=args.folder_id, folder_name=args.folder, policy=policy)
    _print_json(
        {
            "folder": {"id": outcome.folder.id, "name": outcome.folder.name},
            "created": outcome.result.created,
            "deleted": outcome.result.deleted,
            "kept": outcome.result.kept,
            "skipped": outcome.result.skipped,
            "closed": outcome.closed,
        }
    )
    return 0


def _cmd_save_all(args, cfg: RuntimeConfig, store: BookmarkStore) -> int:
    settings = SettingsRepository(SqliteKeyValueStore(cfg.settings_db))
    svc = _save_service(cfg, store, settings, SnapshotTabSource.from_json(args.tabs))
    outcome = svc.save_all_windows(folder_id=args.folder_id, folder_name=args.folder)
    _print_json(
        {
            "folder": {"id": outcome.folder.id, "name": outcome.folder.name},
            "windows": [{"id": f.id, "name": f.name} for f in outcome.window_folders],
            "created": outcome.result.created,
            "deleted": outcome.result.deleted,
            "closed": outcome.closed,
        }
    )
    return 0


def _cmd_autosave(args, cfg: RuntimeConfig, store: BookmarkStore) -> int:
    scheduler = _scheduler(cfg, store, SnapshotTabSource.from_json(args.tabs))
    outcome = scheduler.run_once(force=True)
    if outcome is None:
        log.error("Autosave did not run")
        return 1
    _print_json(
        {
            "folder": {"id": outcome.folder.id, "name": outcome.folder.name},
            "created": outcome.result.created,
            "deleted": outcome.result.deleted,
            "skipped": outcome.result.skipped,
            "pruned": outcome.pruned.deleted if outcome.pruned else [],
        }
    )
    return 0


def _cmd_prune(args, cfg: RuntimeConfig, store: BookmarkStore) -> int:
    settings = SettingsRepository(SqliteKeyValueStore(cfg.settings_db)).load()
    days = args.days if args.days is not None else settings.autosavekeepdays
    if days < 1:
        log.error("--days must be at least 1")
        return 2
    resolver = FolderResolver(store, family=parse_family(cfg.browser))
    parent = resolver.resolve_root(settings.autosaverootfolder, settings.customautosaverootfolder)
    root, _created = resolver.child_folder(parent, AUTOSAVE_ROOT_NAME, create=False)
    if root is None:
        log.info("No %s folder under %s; nothing to prune", AUTOSAVE_ROOT_NAME, parent)
        _print_json({"deleted": [], "kept": 0})
        return 0
    result = RetentionPruner(store).prune(root.id, days)
    _print_json({"deleted": result.deleted, "kept": result.kept})
    return 0


def _cmd_stats(args, cfg: RuntimeConfig) -> int:
    stats = StatsAccumulator(SqliteKeyValueStore(cfg.settings_db))
    record = stats.reset() if args.reset else stats.read()
    _print_json(record.to_record())
    return 0


def _cmd_settings(args, cfg: RuntimeConfig) -> int:
    repo = SettingsRepository(SqliteKeyValueStore(cfg.settings_db))
    if args.changes:
        changes = _parse_assignments(args.changes)
        if changes is None:
            return 2
        settings = repo.update(**changes)
    else:
        settings = repo.load()
    _print_json(settings.to_record())
    return 0


def _cmd_run(args, cfg: RuntimeConfig, store: BookmarkStore) -> int:
    kv = SqliteKeyValueStore(cfg.settings_db)
    scheduler = _scheduler(cfg, store, JsonFileTabSource(args.tabs), kv=kv, alarms=ThreadAlarms())
    scheduler.start()
    log.info("Scheduler running (state %s); press Ctrl-C to stop.", scheduler.state)
    # Settings written by other processes do not reach this process's change feed.
    last = scheduler.settings.load().to_record()
    try:
        while True:
            time.sleep(SETTINGS_POLL_SECONDS)
            current = scheduler.settings.load()
            if current.to_record() != last:
                log.info("Settings changed on disk; re-arming")
                last = current.to_record()
                scheduler.rearm(current)
    except KeyboardInterrupt:
        log.info("Interrupted")
    finally:
        scheduler.stop()
    return 0


def _save_service(cfg: RuntimeConfig, store: BookmarkStore, settings: SettingsRepository, tabs: TabSource) -> SaveService:
    return SaveService(
        settings=settings,
        resolver=FolderResolver(store, family=parse_family(cfg.browser)),
        engine=ReconciliationEngine(store),
        tabs=tabs,
        stats=StatsAccumulator(settings.store),
    )


def _scheduler(
    cfg: RuntimeConfig,
    store: BookmarkStore,
    tabs: TabSource,
    *,
    kv: Optional[SqliteKeyValueStore] = None,
    alarms: Optional[ThreadAlarms] = None,
) -> AutosaveScheduler:
    kv = kv or SqliteKeyValueStore(cfg.settings_db)
    return AutosaveScheduler(
        settings=SettingsRepository(kv),
        alarms=alarms or ThreadAlarms(),
        resolver=FolderResolver(store, family=parse_family(cfg.browser)),
        engine=ReconciliationEngine(store),
        tabs=tabs,
        stats=StatsAccumulator(kv),
        pruner=RetentionPruner(store),
    )


def _policy_overrides(policy: Policy, args) -> Policy:
    changes: Dict[str, Any] = {}
    if args.overwrite is not None:
        changes["overwrite"] = args.overwrite
    if args.save_pinned:
        changes["save_pinned"] = True
    if args.close:
        changes["close_tabs_after_save"] = True
    return replace(policy, **changes) if changes else policy


def _parse_assignments(items: List[str]) -> Optional[Dict[str, Any]]:
    out: Dict[str, Any] = {}
    for item in items:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            log.error("Expected KEY=VALUE, got: %s", item)
            return None
        key = key.strip()
        if key in _TEXT_SETTINGS:
            out[key] = raw
            continue
        # YAML scalars, so true/false/30/null come through typed.
        out[key] = yaml.safe_load(raw) if raw.strip() else ""
    return out


def _backup_places(places: Path, state_dir: Path) -> None:
    try:
        state_dir.mkdir(parents=True, exist_ok=True)
        ts = int(time.time())
        dest = state_dir / f"places.sqlite.bak.{ts}"
        dest.write_bytes(places.read_bytes())
        log.info("Backed up %s -> %s", places, dest)
    except OSError as e:
        log.warning("Places backup failed: %s", e)


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    raise SystemExit(main())
