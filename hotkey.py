"""Global key bindings (the snooze key) through pynput."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from logger import setup_logger

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = setup_logger("hotkey")

Action = Callable[[], object]


class GlobalHotkeyAdapter:
    """Runs the bound action once per key press; auto-repeat while held is ignored."""

    def __init__(self, hotkey_name: str = "Key.f8") -> None:
        self.hotkey_name = hotkey_name
        self._bindings: dict[str, Action] = {}
        self._held: set[str] = set()
        self._listener: Optional[object] = None
        self._lock = threading.Lock()

    def bind(self, key_name: str, action: Action) -> None:
        with self._lock:
            self._bindings[key_name] = action

    def start(self, on_trigger: Optional[Action] = None) -> None:
        if on_trigger is not None:
            self.bind(self.hotkey_name, on_trigger)
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._listener = keyboard.Listener(on_press=self.key_down, on_release=self.key_up)
        self._listener.start()
        logger.info("Listening for %s", ", ".join(sorted(self._bindings)))

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
        with self._lock:
            self._held.clear()

    def key_down(self, key: object) -> None:
        name = str(key)
        with self._lock:
            action = self._bindings.get(name)
            if action is None or name in self._held:
                return
            self._held.add(name)
        try:
            action()
        except Exception:
            logger.exception("Hotkey action for %s failed", name)

    def key_up(self, key: object) -> None:
        with self._lock:
            self._held.discard(str(key))
