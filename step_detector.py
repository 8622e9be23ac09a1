"""Peak-based step detection over acceleration magnitude.

A sample counts as a step when all of these hold:

* at least ``debounce_ms`` passed since the previous accepted step,
* its magnitude (gravity included) reaches ``threshold``,
* the window holds at least three readings and the newest magnitude is
  higher than the one before it, so only the rising edge of a peak counts.

Callbacks run outside the detector lock; the dismissal controller stops the
detector from inside them.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from errors import SensorUnavailableError
from interfaces import MotionSource
from logger import setup_logger
from models import MotionSample
from signal_sampler import WINDOW_MS, SignalSampler

logger = setup_logger("step_detector")

STEP_THRESHOLD = 12.0
DEBOUNCE_MS = 250
MIN_READINGS = 3

StepCallback = Callable[[int], None]
CompleteCallback = Callable[[], None]


class StepDetector:
    def __init__(
        self,
        motion_source: Optional[MotionSource] = None,
        threshold: float = STEP_THRESHOLD,
        debounce_ms: int = DEBOUNCE_MS,
        window_ms: int = WINDOW_MS,
    ) -> None:
        self._motion_source = motion_source
        self.threshold = threshold
        self.debounce_ms = debounce_ms
        self._sampler = SignalSampler(window_ms=window_ms)
        self._lock = threading.Lock()

        self._target = 0
        self._steps = 0
        self._last_step_ms: Optional[int] = None
        self._active = False
        self._completed = False
        self._on_step: Optional[StepCallback] = None
        self._on_complete: Optional[CompleteCallback] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def current_steps(self) -> int:
        return self._steps

    @property
    def target_steps(self) -> int:
        return self._target

    @property
    def progress(self) -> float:
        if self._target <= 0:
            return 0.0
        return min(self._steps / self._target, 1.0)

    def start(
        self,
        target: int,
        on_step: Optional[StepCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
    ) -> bool:
        """Begin counting toward ``target``; returns False if no motion sensor can be used."""
        if target <= 0:
            raise ValueError("target steps must be positive")
        with self._lock:
            self._target = target
            self._steps = 0
            self._last_step_ms = None
            self._sampler.clear()
            self._completed = False
            self._on_step = on_step
            self._on_complete = on_complete
            self._active = True

        if self._motion_source is None:
            logger.warning("No motion source configured, cannot count steps")
            self._active = False
            return False
        try:
            self._motion_source.start(self.handle_sample)
        except (SensorUnavailableError, RuntimeError, OSError) as exc:
            logger.warning("Motion source failed to start: %s", exc)
            self._active = False
            return False
        logger.info("Step counting started, target=%d", target)
        return True

    def stop(self) -> None:
        with self._lock:
            was_active = self._active
            self._active = False
        if was_active:
            self._stop_source()

    def reset(self) -> None:
        self.stop()
        with self._lock:
            self._steps = 0
            self._last_step_ms = None
            self._sampler.clear()
            self._completed = False
            self._on_step = None
            self._on_complete = None

    def handle_sample(self, sample: MotionSample) -> None:
        """Feed one motion sample; called by the motion source at sensor rate."""
        with self._lock:
            if not self._active:
                return
            reading = self._sampler.add(sample)
            if not self._is_step(reading.magnitude, sample.timestamp_ms):
                return
            self._steps += 1
            self._last_step_ms = sample.timestamp_ms
            count = self._steps
            on_step = self._on_step
            finished = count >= self._target and not self._completed
            if finished:
                self._completed = True
                self._active = False
            on_complete = self._on_complete if finished else None

        if finished:
            self._stop_source()
        if on_step is not None:
            on_step(count)
        if on_complete is not None:
            logger.info("Step target reached (%d)", count)
            on_complete()

    def _is_step(self, magnitude: float, now_ms: int) -> bool:
        if self._last_step_ms is not None and now_ms - self._last_step_ms < self.debounce_ms:
            return False
        if magnitude < self.threshold:
            return False
        if len(self._sampler) < MIN_READINGS:
            return False
        previous, current = self._sampler.recent(2)
        return current.magnitude > previous.magnitude

    def _stop_source(self) -> None:
        if self._motion_source is None:
            return
        try:
            self._motion_source.stop()
        except Exception as exc:
            logger.warning("Motion source failed to stop: %s", exc)
