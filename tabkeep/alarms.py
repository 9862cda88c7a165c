from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol

from .log import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Alarm:
    name: str
    period_minutes: float


AlarmListener = Callable[[Alarm], None]


class AlarmService(Protocol):
    def create(self, name: str, period_minutes: float) -> None:
        ...

    def clear_all(self) -> None:
        ...

    def get_all(self) -> List[Alarm]:
        ...

    def add_listener(self, listener: AlarmListener) -> None:
        ...

    def has_listener(self, listener: AlarmListener) -> bool:
        ...

    def remove_listener(self, listener: AlarmListener) -> None:
        ...


class _Listeners:
    def __init__(self) -> None:
        self._listeners: List[AlarmListener] = []
        self._listeners_lock = threading.Lock()

    def add_listener(self, listener: AlarmListener) -> None:
        with self._listeners_lock:
            # Adding twice registers twice, the same as the browser alarm API.
            self._listeners.append(listener)

    def has_listener(self, listener: AlarmListener) -> bool:
        with self._listeners_lock:
            return listener in self._listeners

    def remove_listener(self, listener: AlarmListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _dispatch(self, alarm: Alarm) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(alarm)
            except Exception:
                log.exception("Alarm listener for %s failed", alarm.name)


class ThreadAlarms(_Listeners):
    """Periodic named alarms backed by daemon ``threading.Timer`` chains."""

    def __init__(self, *, seconds_per_minute: float = 60.0):
        super().__init__()
        self.seconds_per_minute = seconds_per_minute
        self._lock = threading.Lock()
        self._alarms: Dict[str, Alarm] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._generation: Dict[str, int] = {}

    def create(self, name: str, period_minutes: float) -> None:
        if period_minutes <= 0:
            raise ValueError("alarm period must be positive")
        with self._lock:
            self._cancel(name)
            alarm = Alarm(name=name, period_minutes=period_minutes)
            self._alarms[name] = alarm
            gen = self._generation.get(name, 0) + 1
            self._generation[name] = gen
            self._schedule(alarm, gen)
        log.debug("Alarm %s created, every %s minute(s)", name, period_minutes)

    def clear_all(self) -> None:
        with self._lock:
            for name in list(self._alarms):
                self._cancel(name)
        log.debug("All alarms cleared")

    def get_all(self) -> List[Alarm]:
        with self._lock:
            return list(self._alarms.values())

    def fire(self, name: str) -> None:
        with self._lock:
            alarm = self._alarms.get(name)
        if alarm is None:
            log.debug("Alarm %s is not armed; nothing fired", name)
            return
        self._dispatch(alarm)

    def _schedule(self, alarm: Alarm, gen: int) -> None:
        t = threading.Timer(alarm.period_minutes * self.seconds_per_minute, self._tick, args=(alarm.name, gen))
        t.daemon = True
        t.name = f"alarm-{alarm.name}"
        self._timers[alarm.name] = t
        t.start()

    def _tick(self, name: str, gen: int) -> None:
        with self._lock:
            alarm = self._alarms.get(name)
            if alarm is None or self._generation.get(name) != gen:
                return
            self._schedule(alarm, gen)
        self._dispatch(alarm)

    def _cancel(self, name: str) -> None:
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()
        self._alarms.pop(name, None)
        self._generation[name] = self._generation.get(name, 0) + 1


class ManualAlarms(_Listeners):
    """Alarms that only fire when told to; for one-shot runs and tests."""

    def __init__(self) -> None:
        super().__init__()
        self._alarms: Dict[str, Alarm] = {}
        self.created: List[Alarm] = []
        self.clears = 0

    def create(self, name: str, period_minutes: float) -> None:
        alarm = Alarm(name=name, period_minutes=period_minutes)
        self._alarms[name] = alarm
        self.created.append(alarm)

    def clear_all(self) -> None:
        self._alarms.clear()
        self.clears += 1

    def get_all(self) -> List[Alarm]:
        return list(self._alarms.values())

    def fire(self, name: str) -> None:
        alarm = self._alarms.get(name)
        if alarm is None:
            log.debug("Alarm %s is not armed; nothing fired", name)
            return
        self._dispatch(alarm)
