"""Manual saves: the routine the popup buttons run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .errors import NotFoundError, StoreError, TabkeepError
from .folders import FolderResolver
from .log import get_logger
from .model import Folder, FolderRef, Policy, ReconcileResult, Window
from .reconcile import ReconciliationEngine
from .settings import Settings, SettingsRepository
from .stats import StatsAccumulator
from .tabs import TabSource, closable_tabs

log = get_logger(__name__)

DEFAULT_FOLDER_NAME = "Save my tabs!"


@dataclass
class SaveOutcome:
    folder: FolderRef
    result: ReconcileResult
    folders_created: int = 0
    closed: int = 0
    window_folders: List[FolderRef] = field(default_factory=list)


def folder_prefix(settings: Settings, now: datetime, window: Optional[Window] = None) -> str:
    if not settings.prefixenabled:
        return ""
    kind = settings.prefixtype
    if kind == "custom":
        return settings.prefixcustom or ""
    if kind == "date":
        return now.strftime("%Y-%m-%d")
    if kind == "datetime":
        return now.strftime("%Y-%m-%d %H:%M")
    if kind == "windowtitle":
        if window is None:
            return "Window[UNKNOWN]"
        return window.folder_name
    return ""


def suggested_folder_names(now: datetime) -> List[str]:
    stamp = now.strftime("%Y-%m-%d %H:%M:%S")
    return [stamp, stamp[:10], DEFAULT_FOLDER_NAME]


class SaveService:
    def __init__(
        self,
        *,
        settings: SettingsRepository,
        resolver: FolderResolver,
        engine: ReconciliationEngine,
        tabs: TabSource,
        stats: StatsAccumulator,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.resolver = resolver
        self.engine = engine
        self.tabs = tabs
        self.stats = stats
        self.clock = clock

    def save_window(
        self,
        *,
        folder_id: Optional[str] = None,
        folder_name: Optional[str] = None,
        policy: Optional[Policy] = None,
    ) -> SaveOutcome:
        """Save the current window's tabs into one folder.

        The folder is ``folder_id`` if given, else ``folder_name`` (looked up or
        created under the manual root, with the configured prefix), else the
        remembered last folder.
        """
        s = self.settings.load()
        policy = policy or s.policy()
        try:
            window = self.tabs.current_window()
            target, created = self._target(s, folder_id, folder_name, window)
            tabs = self.tabs.query(current_window=True)
            result = self.engine.reconcile(target.id, tabs, policy)
            outcome = SaveOutcome(folder=target, result=result, folders_created=int(created))
            if not result.skipped or created:
                self.stats.record(tabs_saved=result.saved, folders_created=outcome.folders_created)
            self._remember(s, policy, target.id)
            if policy.close_tabs_after_save and window is not None:
                outcome.closed = self.close_window_tabs(window.id, close_pinned=s.closepinned)
        except TabkeepError as e:
            log.error("Failed to save tabs: %s", e)
            raise
        log.info("Tabs saved to folder %s (%s)", target.name, target.id)
        return outcome

    def save_all_windows(
        self,
        *,
        folder_id: Optional[str] = None,
        folder_name: Optional[str] = None,
        policy: Optional[Policy] = None,
    ) -> SaveOutcome:
        """Save every window into its own sub-folder of one parent folder."""
        s = self.settings.load()
        policy = policy or s.policy()
        try:
            windows = self.tabs.windows()
            current = next((w for w in windows if w.focused), windows[0] if windows else None)
            parent, parent_created = self._target(s, folder_id, folder_name, current)
            log.info("Saving tabs from %d window(s) into %s", len(windows), parent.name)

            total = ReconcileResult(skipped=True)
            outcome = SaveOutcome(folder=parent, result=total, folders_created=int(parent_created))
            for window in windows:
                sub, created = self.resolver.child_folder(parent.id, window.folder_name)
                if sub is None:
                    raise StoreError(f"could not create folder {window.folder_name} under {parent.id}")
                outcome.window_folders.append(sub)
                outcome.folders_created += int(created)
                result = self.engine.reconcile(sub.id, window.tabs, policy)
                total = total + result
                log.info("Saved %d tab(s) from window %s", result.saved, window.id)
            outcome.result = total

            self.stats.record(tabs_saved=total.saved, folders_created=outcome.folders_created)
            self._remember(s, policy, parent.id)
            if policy.close_tabs_after_save:
                for window in windows:
                    outcome.closed += self.close_window_tabs(window.id, close_pinned=s.closepinned)
        except TabkeepError as e:
            log.error("Failed to save all windows: %s", e)
            raise
        log.info("Saved %d tab(s) from %d window(s)", outcome.result.saved, len(windows))
        return outcome

    def close_window_tabs(self, window_id: int, *, close_pinned: bool = False) -> int:
        """Close a window's tabs, sparing new-tab pages and (unless asked) pinned tabs.

        When every tab would go, a blank tab is opened first so the window stays open.
        """
        window = next((w for w in self.tabs.windows() if w.id == window_id), None)
        if window is None:
            raise StoreError(f"window not found: {window_id}")
        to_close = closable_tabs(window.tabs, close_pinned=close_pinned)
        if not to_close:
            return 0
        if len(to_close) == len(window.tabs):
            log.info("Opening a blank tab so window %s stays open", window_id)
            self.tabs.create(window_id)
        self.tabs.remove([t.id for t in to_close])
        log.info("Closed %d tab(s) in window %s", len(to_close), window_id)
        return len(to_close)

    def _target(
        self,
        s: Settings,
        folder_id: Optional[str],
        folder_name: Optional[str],
        window: Optional[Window],
    ) -> Tuple[FolderRef, bool]:
        if folder_id:
            node = self.resolver.store.get(folder_id)
            if not isinstance(node, Folder):
                raise NotFoundError(f"not a bookmark folder: {folder_id}")
            return FolderRef(id=node.id, name=node.title), False

        name = (folder_name or "").strip()
        prefix = folder_prefix(s, self.clock(), window)
        full_name = " ".join(p for p in (prefix, name) if p)
        if full_name:
            root = self.resolver.manual_root(s)
            return self.resolver.ensure(full_name, root)

        last = self.resolver.last_folder(s)
        if last is not None:
            node = self.resolver.store.get(last)
            return FolderRef(id=last, name=node.title), False
        raise NotFoundError("no target folder: give a folder name or id, or enable remembering the last folder")

    def _remember(self, s: Settings, policy: Policy, folder_id: str) -> None:
        if s.rememberlast and policy.remember_last:
            self.settings.save_last_folder(folder_id)
