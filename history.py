"""Append-only alarm history and derived statistics."""

from __future__ import annotations

import dataclasses
import threading
from typing import Callable, Iterable, Optional

from errors import StateConflictError
from logger import setup_logger
from models import DismissType, HistoryEntry, Statistics, StoreDiff

logger = setup_logger("history")

DiffCallback = Callable[[StoreDiff], None]

HISTORY = "history"


class HistoryRecorder:
    """Holds entries in insertion order; ``newest_first`` is the display order."""

    def __init__(
        self,
        entries: Optional[Iterable[HistoryEntry]] = None,
        on_diff: Optional[DiffCallback] = None,
    ) -> None:
        self._entries: list[HistoryEntry] = list(entries or [])
        self._on_diff = on_diff
        self._lock = threading.Lock()

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def newest_first(self) -> list[HistoryEntry]:
        return list(reversed(self._entries))

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def record(self, entry: HistoryEntry) -> HistoryEntry:
        with self._lock:
            if any(existing.id == entry.id for existing in self._entries):
                raise StateConflictError(f"history entry {entry.id} already recorded")
            self._entries.append(entry)
        self._emit(StoreDiff(HISTORY, "add", entry.id, entry.to_dict()))
        return entry

    def resolve(self, entry_id: str, dismiss_time: int, dismiss_type: DismissType, **fields: object) -> HistoryEntry:
        """Fill in the outcome of a ring; allowed exactly once per entry."""
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.id != entry_id:
                    continue
                if entry.resolved:
                    raise StateConflictError(f"history entry {entry_id} is already resolved")
                updated = dataclasses.replace(
                    entry, dismiss_time=dismiss_time, dismiss_type=dismiss_type, **fields
                )
                self._entries[index] = updated
                break
            else:
                raise KeyError(entry_id)
        logger.info("History %s resolved as %s", entry_id, dismiss_type.value)
        self._emit(StoreDiff(HISTORY, "update", entry_id, updated.to_dict()))
        return updated

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.id != entry_id]
            removed = len(self._entries) != before
        if removed:
            self._emit(StoreDiff(HISTORY, "delete", entry_id))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries = []
        self._emit(StoreDiff(HISTORY, "clear"))

    def statistics(self) -> Statistics:
        return aggregate(self._entries)

    def _emit(self, diff: StoreDiff) -> None:
        if self._on_diff:
            self._on_diff(diff)


def aggregate(log: Iterable[HistoryEntry]) -> Statistics:
    """Single pass over ``log``; latency averages only entries with both timestamps."""
    stats = Statistics()
    latency_ms = 0
    timed = 0
    for entry in log:
        stats.total += 1
        stats.by_type[entry.dismiss_type] += 1
        if entry.was_snoozed:
            stats.snoozed += 1
        if entry.dismiss_time is not None:
            stats.dismissed += 1
            if entry.ring_time is not None:
                latency_ms += entry.dismiss_time - entry.ring_time
                timed += 1
    if timed:
        stats.average_dismiss_seconds = latency_ms / timed / 1000
    return stats
