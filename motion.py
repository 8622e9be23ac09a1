"""Motion source adapter fed through a queue.

Desktop machines have no accelerometer, so samples arrive from an external
producer (a paired phone, a replay file, a test) that calls ``push``. A worker
thread drains the queue and forwards each sample to the step detector until a
``None`` sentinel or ``stop``.
"""

from __future__ import annotations

import csv
import threading
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Callable, Optional

from errors import SensorUnavailableError
from logger import setup_logger
from models import MotionSample

logger = setup_logger("motion")


class QueueMotionSource:
    def __init__(self, available: bool = True, queue_maxsize: int = 256) -> None:
        self.available = available
        self._queue: Queue[MotionSample | None] = Queue(maxsize=queue_maxsize)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._on_sample: Optional[Callable[[MotionSample], None]] = None
        self.dropped_samples = 0

    def start(self, on_sample: Callable[[MotionSample], None]) -> None:
        if not self.available:
            raise SensorUnavailableError("motion sensor is not available")
        thread = self._thread
        if thread and thread.is_alive():
            if not self._stop_event.is_set():
                self._on_sample = on_sample
                return
            if thread is not threading.current_thread():
                thread.join(timeout=0.5)
        self._on_sample = on_sample
        self._drain()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=0.5)

    def push(self, sample: MotionSample) -> bool:
        """Queue a sample; returns False when it had to be dropped."""
        try:
            self._queue.put_nowait(sample)
        except Full:
            self.dropped_samples += 1
            return False
        return True

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except Empty:
                return

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                sample = self._queue.get(timeout=0.2)
            except Empty:
                continue
            if sample is None:  # Sentinel
                break
            callback = self._on_sample
            if callback is None or self._stop_event.is_set():
                continue
            try:
                callback(sample)
            except Exception:
                logger.exception("Motion sample handler failed")


def read_motion_csv(path: Path, start_ms: int = 0) -> list[MotionSample]:
    """Load ``t_ms,x,y,z`` rows (header optional), shifting timestamps by ``start_ms``."""
    samples: list[MotionSample] = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        for row in csv.reader(f):
            if len(row) < 4:
                continue
            try:
                t, x, y, z = (float(value) for value in row[:4])
            except ValueError:
                continue  # header or comment line
            samples.append(MotionSample(timestamp_ms=start_ms + int(t), x=x, y=y, z=z))
    return samples
