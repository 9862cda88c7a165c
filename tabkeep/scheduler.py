from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .alarms import Alarm, AlarmService
from .errors import StoreError
from .folders import FolderResolver
from .log import get_logger
from .model import FolderRef, ReconcileResult
from .reconcile import ReconciliationEngine
from .retention import PruneResult, RetentionPruner
from .settings import Settings, SettingsRepository
from .stats import StatsAccumulator
from .tabs import TabSource

log = get_logger(__name__)

# The scheduler owns this alarm name; nothing else may create alarms on the same service.
AUTOSAVE_ALARM = "autosave"

DISABLED = "DISABLED"
ARMED = "ARMED"


@dataclass
class AutosaveOutcome:
    folder: FolderRef
    result: ReconcileResult
    folders_created: int = 0
    pruned: Optional[PruneResult] = None


class AutosaveScheduler:
    """Keeps exactly one periodic autosave alarm in line with the settings record.

    Every (re)arm clears all alarms first and then creates at most one, so repeated
    settings changes never pile up alarms. Each firing re-reads the settings rather
    than trusting the values it was armed with.
    """

    def __init__(
        self,
        *,
        settings: SettingsRepository,
        alarms: AlarmService,
        resolver: FolderResolver,
        engine: ReconciliationEngine,
        tabs: TabSource,
        stats: StatsAccumulator,
        pruner: RetentionPruner,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.alarms = alarms
        self.resolver = resolver
        self.engine = engine
        self.tabs = tabs
        self.stats = stats
        self.pruner = pruner
        self.clock = clock

    @property
    def state(self) -> str:
        return ARMED if any(a.name == AUTOSAVE_ALARM for a in self.alarms.get_all()) else DISABLED

    def start(self) -> None:
        log.debug("Autosave scheduler starting up")
        self.rearm()
        self.settings.add_change_listener(self._on_settings_changed)

    def stop(self) -> None:
        self.settings.remove_change_listener(self._on_settings_changed)
        self.alarms.clear_all()
        self.alarms.remove_listener(self._on_alarm)
        log.info("Autosave scheduler stopped")

    def rearm(self, settings: Optional[Settings] = None) -> str:
        s = settings if settings is not None else self.settings.load()
        try:
            self.alarms.clear_all()
            if s.autosave:
                self.alarms.create(AUTOSAVE_ALARM, s.interval_minutes)
                if not self.alarms.has_listener(self._on_alarm):
                    self.alarms.add_listener(self._on_alarm)
                log.info("Autosave armed every %d minute(s)", s.interval_minutes)
            else:
                log.info("Autosave disabled; no alarm armed")
        except (StoreError, ValueError) as e:
            log.error("Could not update autosave alarm: %s", e)
        return self.state

    def _on_settings_changed(self, settings: Settings) -> None:
        self.rearm(settings)

    def _on_alarm(self, alarm: Alarm) -> None:
        if alarm.name != AUTOSAVE_ALARM:
            return
        log.info("Periodic save triggered by alarm %s", alarm.name)
        try:
            self.run_once()
        except Exception:
            # No UI is around at alarm time; the log is the only report.
            log.exception("Scheduled save failed")

    def run_once(self, *, now: Optional[datetime] = None, force: bool = False) -> Optional[AutosaveOutcome]:
        """Save all open tabs into today's autosave folder.

        Returns None when autosave is disabled (unless ``force``).
        """
        s = self.settings.load()
        if not s.autosave and not force:
            log.info("Autosave is disabled; nothing to do")
            return None

        when = now or self.clock()
        root, root_created = self.resolver.autosave_root(s)
        day, day_created = self.resolver.dated_folder(root.id, when)
        folders_created = int(root_created) + int(day_created)
        log.info("Using daily folder %s with id %s", day.name, day.id)

        tabs = self.tabs.query(current_window=False)
        result = self.engine.reconcile(day.id, tabs, s.policy())
        outcome = AutosaveOutcome(folder=day, result=result, folders_created=folders_created)
        if not result.skipped:
            self.stats.record(tabs_saved=result.saved, folders_created=folders_created, auto_triggered=True)

        if s.autosavekeeplimit:
            outcome.pruned = self.pruner.prune(root.id, s.autosavekeepdays, today=when.date())
        return outcome
