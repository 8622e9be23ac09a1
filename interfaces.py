"""Protocol interfaces used by the engine and its collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Protocol

from models import Alarm, HistoryEntry, ImageHandle, MotionSample, StoreDiff


class Clock(Protocol):
    def now_ms(self) -> int: ...


class CancellableTimer(Protocol):
    def cancel(self) -> None: ...


class TimerFactory(Protocol):
    def __call__(self, delay_s: float, callback: Callable[[], None]) -> CancellableTimer: ...


class MotionSource(Protocol):
    def start(self, on_sample: Callable[[MotionSample], None]) -> None: ...

    def stop(self) -> None: ...


class ImageCodec(Protocol):
    def decode(self, handle: ImageHandle) -> Any: ...


class Notifier(Protocol):
    def ring_started(self, alarm: Alarm) -> None: ...

    def ring_stopped(self, alarm: Alarm) -> None: ...


class CaptureDevice(Protocol):
    def release(self) -> None: ...


class ConfigStore(Protocol):
    def get_data_dir(self) -> Path: ...

    def get_default_steps(self) -> int: ...

    def get_default_similarity(self) -> float: ...

    def get_default_snooze_minutes(self) -> int: ...

    def get_sound_enabled(self) -> bool: ...

    def get_vibration_enabled(self) -> bool: ...

    def get_snooze_hotkey(self) -> str: ...


class EngineStore(Protocol):
    def load_alarms(self) -> list[Alarm]: ...

    def load_history(self) -> list[HistoryEntry]: ...

    def apply(self, diff: StoreDiff) -> None: ...
