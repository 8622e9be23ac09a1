"""Wall-clock source and cancellable deferred callbacks."""

from __future__ import annotations

import threading
import time
from typing import Callable


def now_ms() -> int:
    return int(time.time() * 1000)


class SystemClock:
    def now_ms(self) -> int:
        return now_ms()


class ThreadTimer:
    """One-shot timer handle; ``cancel`` is safe to call at any time."""

    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self._timer = threading.Timer(delay_s, callback)
        self._timer.daemon = True

    def start(self) -> "ThreadTimer":
        self._timer.start()
        return self

    def cancel(self) -> None:
        self._timer.cancel()

    @property
    def active(self) -> bool:
        return self._timer.is_alive()


def start_thread_timer(delay_s: float, callback: Callable[[], None]) -> ThreadTimer:
    return ThreadTimer(delay_s, callback).start()
