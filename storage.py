"""JSON files for alarm definitions and history, updated from engine diffs."""

from __future__ import annotations

import json
import threading
from pathlib import Path

from logger import setup_logger
from models import Alarm, HistoryEntry, StoreDiff

logger = setup_logger("storage")


class JsonEngineStore:
    _files = {"alarms": "alarms.json", "history": "history.json"}

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def load_alarms(self) -> list[Alarm]:
        alarms = []
        for item in self._read("alarms"):
            try:
                alarms.append(Alarm.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable alarm %r: %s", item.get("id"), exc)
        return alarms

    def load_history(self) -> list[HistoryEntry]:
        entries = []
        for item in self._read("history"):
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable history entry %r: %s", item.get("id"), exc)
        return entries

    def apply(self, diff: StoreDiff) -> None:
        with self._lock:
            items = self._read(diff.collection)
            if diff.action == "add":
                items.append(diff.payload or {})
            elif diff.action == "update":
                items = [diff.payload if i.get("id") == diff.item_id else i for i in items]
            elif diff.action == "delete":
                items = [i for i in items if i.get("id") != diff.item_id]
            elif diff.action == "clear":
                items = []
            else:
                raise ValueError(f"unknown diff action {diff.action!r}")
            self._write(diff.collection, items)

    def _path(self, collection: str) -> Path:
        return self.data_dir / self._files[collection]

    def _read(self, collection: str) -> list[dict]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            return []
        items = data.get(collection, []) if isinstance(data, dict) else []
        return [i for i in items if isinstance(i, dict)]

    def _write(self, collection: str, items: list[dict]) -> None:
        path = self._path(collection)
        payload = json.dumps({collection: items}, ensure_ascii=False, indent=2)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(path)
