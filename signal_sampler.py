"""Sliding window over tri-axial acceleration samples."""

from __future__ import annotations

import math
from collections import deque

from models import MotionSample, StepReading

WINDOW_MS = 2000


def magnitude(x: float, y: float, z: float) -> float:
    return math.sqrt(x * x + y * y + z * z)


class SignalSampler:
    """Keeps the readings of the last ``window_ms`` milliseconds, oldest first."""

    def __init__(self, window_ms: int = WINDOW_MS) -> None:
        self.window_ms = window_ms
        self._readings: deque[StepReading] = deque()

    def add(self, sample: MotionSample) -> StepReading:
        reading = StepReading(
            timestamp_ms=sample.timestamp_ms,
            x=sample.x,
            y=sample.y,
            z=sample.z,
            magnitude=magnitude(sample.x, sample.y, sample.z),
        )
        self._readings.append(reading)
        cutoff = sample.timestamp_ms - self.window_ms
        while self._readings and self._readings[0].timestamp_ms <= cutoff:
            self._readings.popleft()
        return reading

    def recent(self, count: int) -> list[StepReading]:
        if count <= 0:
            return []
        return list(self._readings)[-count:]

    def clear(self) -> None:
        self._readings.clear()

    def __len__(self) -> int:
        return len(self._readings)
