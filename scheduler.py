"""Alarm trigger decisions.

Pure functions: they read alarms and a timestamp and never mutate either.
The caller stamps ``last_ring_time`` on every alarm returned by ``tick``
before the next poll; that stamp is what limits an alarm to one trigger per
calendar minute while polling once a second.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from models import Alarm

MINUTES_PER_DAY = 24 * 60


def local_time(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000)


def day_index(moment: datetime) -> int:
    """Sunday-first weekday index (Sun=0 .. Sat=6)."""
    return (moment.weekday() + 1) % 7


def should_ring_today(alarm: Alarm, moment: datetime) -> bool:
    return not any(alarm.repeat_days) or alarm.repeat_days[day_index(moment)]


def same_minute(first: datetime, second: datetime) -> bool:
    return first.replace(second=0, microsecond=0) == second.replace(second=0, microsecond=0)


def tick(now_ms: int, alarms: Iterable[Alarm]) -> list[str]:
    """Ids of alarms that should start ringing at ``now_ms``."""
    now = local_time(now_ms)
    due: list[str] = []
    for alarm in alarms:
        if not alarm.enabled:
            continue
        if not should_ring_today(alarm, now):
            continue
        if (alarm.hour, alarm.minute) != (now.hour, now.minute):
            continue
        if alarm.last_ring_time is not None and same_minute(local_time(alarm.last_ring_time), now):
            continue
        due.append(alarm.id)
    return due


def minutes_until(now_ms: int, alarm: Alarm) -> int:
    """Wall-clock minutes until the alarm's next occurrence, wrapping past midnight."""
    now = local_time(now_ms)
    diff = alarm.minute_of_day - (now.hour * 60 + now.minute)
    if diff < 0:
        diff += MINUTES_PER_DAY
    return diff


def get_next_alarm(now_ms: int, alarms: Sequence[Alarm]) -> Optional[Alarm]:
    """The enabled alarm that comes soonest; ties keep input order."""
    best: Optional[Alarm] = None
    best_diff = MINUTES_PER_DAY
    for alarm in alarms:
        if not alarm.enabled:
            continue
        diff = minutes_until(now_ms, alarm)
        if diff < best_diff:
            best, best_diff = alarm, diff
    return best
