"""Simple JSON-based config store."""

from __future__ import annotations

import json
from pathlib import Path

from models import DEFAULT_REQUIRED_STEPS, DEFAULT_SIMILARITY_THRESHOLD, DEFAULT_SNOOZE_MINUTES

CONFIG_DIR = Path.home() / ".config" / "wake_proof"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or CONFIG_DIR / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_data_dir(self) -> Path:
        data = self._read_all()
        return Path(data.get("data_dir", str(self._path.parent / "data")))

    def set_data_dir(self, path: Path) -> None:
        self._set("data_dir", str(path))

    def get_default_steps(self) -> int:
        data = self._read_all()
        try:
            value = int(data.get("default_steps", DEFAULT_REQUIRED_STEPS))
        except (TypeError, ValueError):
            return DEFAULT_REQUIRED_STEPS
        return value if value > 0 else DEFAULT_REQUIRED_STEPS

    def set_default_steps(self, steps: int) -> None:
        if steps <= 0:
            raise ValueError("default steps must be positive")
        self._set("default_steps", steps)

    def get_default_similarity(self) -> float:
        data = self._read_all()
        try:
            value = float(data.get("default_similarity", DEFAULT_SIMILARITY_THRESHOLD))
        except (TypeError, ValueError):
            return DEFAULT_SIMILARITY_THRESHOLD
        return value if 0.0 <= value <= 1.0 else DEFAULT_SIMILARITY_THRESHOLD

    def set_default_similarity(self, threshold: float) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("similarity threshold must be within [0, 1]")
        self._set("default_similarity", threshold)

    def get_default_snooze_minutes(self) -> int:
        data = self._read_all()
        try:
            value = int(data.get("default_snooze_minutes", DEFAULT_SNOOZE_MINUTES))
        except (TypeError, ValueError):
            return DEFAULT_SNOOZE_MINUTES
        return value if value > 0 else DEFAULT_SNOOZE_MINUTES

    def set_default_snooze_minutes(self, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError("snooze minutes must be positive")
        self._set("default_snooze_minutes", minutes)

    def get_sound_enabled(self) -> bool:
        return bool(self._read_all().get("sound_enabled", True))

    def set_sound_enabled(self, enabled: bool) -> None:
        self._set("sound_enabled", enabled)

    def get_vibration_enabled(self) -> bool:
        return bool(self._read_all().get("vibration_enabled", True))

    def set_vibration_enabled(self, enabled: bool) -> None:
        self._set("vibration_enabled", enabled)

    def get_snooze_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("snooze_hotkey", "Key.f8"))

    def set_snooze_hotkey(self, hotkey: str) -> None:
        self._set("snooze_hotkey", hotkey)

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
