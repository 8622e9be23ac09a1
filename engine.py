"""Engine coordinator: owns alarms, history and the dismissal controller.

Every mutation is reported as a ``StoreDiff`` so the host can persist it;
the engine itself never touches storage.
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from dismissal import DismissalController
from errors import AlarmEngineError
from history import HistoryRecorder
from interfaces import Clock
from logger import setup_logger
from models import Alarm, Dismissal, HistoryEntry, Statistics, StepsDismissal, StoreDiff, new_id
from scheduler import get_next_alarm, minutes_until, tick

logger = setup_logger("engine")

DiffCallback = Callable[[StoreDiff], None]
ErrorCallback = Callable[[str, str], None]

ALARMS = "alarms"


@dataclass
class EngineState:
    alarms: list[Alarm] = field(default_factory=list)
    history: HistoryRecorder = field(default_factory=HistoryRecorder)

    def find(self, alarm_id: str) -> Optional[Alarm]:
        for alarm in self.alarms:
            if alarm.id == alarm_id:
                return alarm
        return None


class AlarmEngine:
    def __init__(
        self,
        clock: Clock,
        controller: DismissalController,
        history: HistoryRecorder,
        alarms: Optional[Iterable[Alarm]] = None,
        on_diff: Optional[DiffCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._clock = clock
        self._controller = controller
        self._state = EngineState(alarms=_sorted(alarms or []), history=history)
        self._on_diff = on_diff
        self._on_error = on_error
        self._lock = threading.RLock()

    @property
    def controller(self) -> DismissalController:
        return self._controller

    @property
    def alarms(self) -> list[Alarm]:
        return list(self._state.alarms)

    @property
    def history(self) -> list[HistoryEntry]:
        return self._state.history.newest_first()

    def get_alarm(self, alarm_id: str) -> Optional[Alarm]:
        return self._state.find(alarm_id)

    # ------------------------------------------------------------------
    # Alarm definitions
    # ------------------------------------------------------------------

    def add_alarm(
        self,
        title: str,
        hour: int,
        minute: int,
        dismissal: Optional[Dismissal] = None,
        **options: Any,
    ) -> Alarm:
        alarm = Alarm(
            id=new_id(),
            title=title,
            hour=hour,
            minute=minute,
            dismissal=dismissal or StepsDismissal(),
            created_at=self._clock.now_ms(),
            **options,
        )
        with self._lock:
            self._state.alarms = _sorted(self._state.alarms + [alarm])
        logger.info("Added alarm %s at %02d:%02d", alarm.id, hour, minute)
        self._emit(StoreDiff(ALARMS, "add", alarm.id, alarm.to_dict()))
        return alarm

    def update_alarm(self, alarm_id: str, **changes: Any) -> Alarm:
        with self._lock:
            current = self._state.find(alarm_id)
            if current is None:
                raise KeyError(alarm_id)
            updated = dataclasses.replace(current, **changes)
            self._state.alarms = _sorted(
                [updated if a.id == alarm_id else a for a in self._state.alarms]
            )
        self._controller.refresh_alarm(updated)
        self._emit(StoreDiff(ALARMS, "update", alarm_id, updated.to_dict()))
        return updated

    def toggle_alarm(self, alarm_id: str) -> Alarm:
        current = self._state.find(alarm_id)
        if current is None:
            raise KeyError(alarm_id)
        return self.update_alarm(alarm_id, enabled=not current.enabled)

    def delete_alarm(self, alarm_id: str) -> bool:
        with self._lock:
            before = len(self._state.alarms)
            self._state.alarms = [a for a in self._state.alarms if a.id != alarm_id]
            removed = len(self._state.alarms) != before
        if not removed:
            return False
        self._controller.alarm_deleted(alarm_id)
        logger.info("Deleted alarm %s", alarm_id)
        self._emit(StoreDiff(ALARMS, "delete", alarm_id))
        return True

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def poll(self) -> list[str]:
        """Run one scheduler tick and start ringing the due alarms; returns the ids that rang."""
        now = self._clock.now_ms()
        with self._lock:
            alarms = list(self._state.alarms)
        rang: list[str] = []
        for alarm_id in tick(now, alarms):
            alarm = self._state.find(alarm_id)
            if alarm is None:
                continue
            alarm.last_ring_time = now
            self._emit(StoreDiff(ALARMS, "update", alarm.id, alarm.to_dict()))
            try:
                self._controller.ring(alarm)
            except AlarmEngineError as exc:
                logger.warning("Alarm %s could not ring: %s", alarm.id, exc.message)
                if self._on_error:
                    self._on_error(exc.code, exc.message)
                continue
            rang.append(alarm.id)
        return rang

    def next_alarm(self) -> Optional[Alarm]:
        return get_next_alarm(self._clock.now_ms(), self._state.alarms)

    def minutes_until_next(self) -> Optional[int]:
        alarm = self.next_alarm()
        if alarm is None:
            return None
        return minutes_until(self._clock.now_ms(), alarm)

    def statistics(self) -> Statistics:
        return self._state.history.statistics()

    def shutdown(self) -> None:
        self._controller.shutdown()

    def _emit(self, diff: StoreDiff) -> None:
        if self._on_diff:
            self._on_diff(diff)


def _sorted(alarms: Iterable[Alarm]) -> list[Alarm]:
    return sorted(alarms, key=lambda a: a.minute_of_day)
