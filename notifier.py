"""Audible ring feedback through sounddevice."""

from __future__ import annotations

import threading
from typing import Any

import numpy as np

from logger import setup_logger
from models import Alarm

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = setup_logger("notifier")

TONES = {
    "default": np.array([523.25, 659.25, 783.99, 523.25]),  # C5 E5 G5 C5
    "beep": np.array([880.0]),
    "siren": np.array([659.25, 880.0]),
}
DEFAULT_SOUND = "default"
NOTE_SECONDS = 0.2
PULSE_SECONDS = 0.5
BASE_GAIN = 0.5


def tone_for(sound: str) -> np.ndarray:
    """Note frequencies for an alarm sound name; unknown names use the default arpeggio."""
    notes = TONES.get(sound)
    if notes is None:
        logger.warning("Unknown alarm sound %r, using %s", sound, DEFAULT_SOUND)
        return TONES[DEFAULT_SOUND]
    return notes


class SoundDeviceNotifier:
    """Loops a pulsed square-wave arpeggio until the ring stops."""

    def __init__(
        self,
        sample_rate: int = 44100,
        sound_enabled: bool = True,
        vibration_enabled: bool = True,
    ) -> None:
        self.sample_rate = sample_rate
        self.sound_enabled = sound_enabled
        self.vibration_enabled = vibration_enabled
        self._stream: Any = None
        self._running = False
        self._volume = 1.0
        self._notes = TONES[DEFAULT_SOUND]
        self._position = 0
        self._lock = threading.Lock()

    @property
    def playing(self) -> bool:
        return self._running

    def ring_started(self, alarm: Alarm) -> None:
        if alarm.vibrate and self.vibration_enabled:
            logger.info("Vibration requested for %s (no haptics on this device)", alarm.id)
        with self._lock:
            if self._running or not self.sound_enabled:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            self._volume = alarm.volume
            self._notes = tone_for(alarm.sound)
            self._position = 0
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                callback=self._on_audio,
            )
            self._stream.start()
            self._running = True

    def ring_stopped(self, alarm: Alarm) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None

    def _on_audio(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            outdata.fill(0)
            return
        outdata[:, 0] = self._next_chunk(frames)

    def _next_chunk(self, frames: int) -> np.ndarray:
        t = (np.arange(frames) + self._position) / self.sample_rate
        self._position += frames
        note = (t // NOTE_SECONDS).astype(np.int64) % len(self._notes)
        wave = np.sign(np.sin(2 * np.pi * self._notes[note] * t))
        gate = (t % PULSE_SECONDS) < PULSE_SECONDS / 2
        return (wave * gate * self._volume * BASE_GAIN).astype(np.float32)
