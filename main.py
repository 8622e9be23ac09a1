"""Application entrypoint."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

from clock import SystemClock, now_ms
from config import JsonConfigStore
from dismissal import DismissalController
from engine import AlarmEngine
from history import HistoryRecorder
from hotkey import GlobalHotkeyAdapter
from interfaces import ConfigStore, EngineStore
from logger import setup_logger
from models import (
    BothDismissal,
    DismissMethod,
    EngineEvent,
    EventKind,
    MotionSample,
    PhotoDismissal,
    SessionState,
    StepsDismissal,
)
from motion import QueueMotionSource, read_motion_csv
from notifier import SoundDeviceNotifier
from overlay import RingingOverlay
from similarity import PhotoVerificationWorker, SimilarityVerifier
from step_detector import StepDetector
from storage import JsonEngineStore

try:
    from PySide6.QtCore import QObject, QSize, QTimer, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import (
        QApplication,
        QFileDialog,
        QInputDialog,
        QMenu,
        QMessageBox,
        QSystemTrayIcon,
    )
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = setup_logger("app")

IMAGE_FILTER = "Images (*.png *.jpg *.jpeg *.bmp *.webp)"


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"      # grey
ICON_RINGING = "#FF4444"   # red
ICON_SNOOZED = "#4488FF"   # blue


class UIBridge(QObject):
    event_signal = Signal(object)
    error_signal = Signal(str)
    state_signal = Signal(str, str)  # from_state, to_state


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store: ConfigStore = JsonConfigStore()
        self.store: EngineStore = JsonEngineStore(self.config_store.get_data_dir())
        self.overlay = RingingOverlay()
        self.ui = UIBridge()
        self.ui.event_signal.connect(self._on_event_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.state_signal.connect(self._on_state_change_ui)

        self.motion_source = QueueMotionSource()
        self.verifier = SimilarityVerifier()
        self.photo_worker = PhotoVerificationWorker(self.verifier)
        history = HistoryRecorder(self.store.load_history(), on_diff=self.store.apply)
        self.controller = DismissalController(
            step_detector=StepDetector(self.motion_source),
            verifier=self.verifier,
            history=history,
            clock=SystemClock(),
            notifier=SoundDeviceNotifier(
                sound_enabled=self.config_store.get_sound_enabled(),
                vibration_enabled=self.config_store.get_vibration_enabled(),
            ),
            on_state_change=self._on_state_change,
            on_event=self._on_event,
            on_error=self._on_error,
        )
        self.engine = AlarmEngine(
            clock=SystemClock(),
            controller=self.controller,
            history=history,
            alarms=self.store.load_alarms(),
            on_diff=self.store.apply,
            on_error=self._on_error,
        )
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_snooze_hotkey())

        self.poll_timer = QTimer()
        self.poll_timer.setInterval(1000)
        self.poll_timer.timeout.connect(self._poll)

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self._setup_menu()
        self._refresh_tooltip()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        add_action = QAction("Add Alarm…", menu)
        add_action.triggered.connect(self._add_alarm)
        menu.addAction(add_action)

        stats_action = QAction("Statistics", menu)
        stats_action.triggered.connect(self._show_statistics)
        menu.addAction(stats_action)

        menu.addSeparator()
        photo_action = QAction("Verify Photo…", menu)
        photo_action.triggered.connect(self._verify_photo)
        menu.addAction(photo_action)

        motion_action = QAction("Replay Motion Recording…", menu)
        motion_action.triggered.connect(self._replay_motion)
        menu.addAction(motion_action)

        snooze_action = QAction("Snooze", menu)
        snooze_action.triggered.connect(lambda: self.controller.snooze())
        menu.addAction(snooze_action)

        stop_action = QAction("Stop Alarm", menu)
        stop_action.triggered.connect(self._force_stop)
        menu.addAction(stop_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # Menu actions
    # ------------------------------------------------------------------

    def _add_alarm(self) -> None:
        value, ok = QInputDialog.getText(None, "New Alarm", "Time (HH:MM)")
        if not ok or not value:
            return
        try:
            hour, minute = (int(part) for part in value.strip().split(":"))
        except ValueError:
            QMessageBox.warning(None, "Invalid time", "Use the HH:MM format, e.g. 07:00")
            return
        methods = [m.value for m in DismissMethod]
        method, ok = QInputDialog.getItem(None, "Dismiss Method", "Prove you are awake by", methods, 0, False)
        if not ok:
            return
        steps = self.config_store.get_default_steps()
        threshold = self.config_store.get_default_similarity()
        reference = None
        if method != DismissMethod.STEPS.value:
            reference, _ = QFileDialog.getOpenFileName(None, "Reference Photo", "", IMAGE_FILTER)
            if not reference:
                QMessageBox.warning(None, "Reference needed", "Photo alarms need a reference photo.")
                return
        if method == DismissMethod.STEPS.value:
            dismissal = StepsDismissal(required_steps=steps)
        elif method == DismissMethod.PHOTO.value:
            dismissal = PhotoDismissal(reference_photo=reference, similarity_threshold=threshold)
        else:
            dismissal = BothDismissal(
                required_steps=steps, reference_photo=reference, similarity_threshold=threshold
            )
        try:
            self.engine.add_alarm(
                "Alarm",
                hour,
                minute,
                dismissal=dismissal,
                snooze_minutes=self.config_store.get_default_snooze_minutes(),
            )
        except ValueError as exc:
            QMessageBox.warning(None, "Invalid alarm", str(exc))
            return
        self._refresh_tooltip()

    def _show_statistics(self) -> None:
        stats = self.engine.statistics()
        lines = [f"Total rings: {stats.total}", f"Snoozed: {stats.snoozed}"]
        lines += [f"{kind.value}: {count}" for kind, count in stats.by_type.items() if count]
        lines.append(f"Average time to dismiss: {stats.average_dismiss_seconds:.0f}s")
        QMessageBox.information(None, "Statistics", "\n".join(lines))

    def _verify_photo(self) -> None:
        if self.controller.session is None:
            self.overlay.show_error("No alarm is ringing")
            return
        path, _ = QFileDialog.getOpenFileName(None, "Captured Photo", "", IMAGE_FILTER)
        if not path:
            return
        if not self.controller.submit_photo_async(path, self.photo_worker):
            self.overlay.show_error("A photo is already being checked")

    def _replay_motion(self) -> None:
        path, _ = QFileDialog.getOpenFileName(None, "Motion Recording", "", "CSV (*.csv)")
        if not path:
            return
        samples = read_motion_csv(Path(path), start_ms=now_ms())
        threading.Thread(target=self._push_samples, args=(samples,), daemon=True).start()

    def _push_samples(self, samples: list[MotionSample]) -> None:
        previous = None
        for sample in samples:
            if previous is not None:
                time.sleep(max(0, sample.timestamp_ms - previous) / 1000)
            previous = sample.timestamp_ms
            self.motion_source.push(sample)

    def _force_stop(self) -> None:
        self.controller.force_stop()

    def _poll(self) -> None:
        self.engine.poll()

    # ------------------------------------------------------------------
    # Callbacks (may run on worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_event(self, event: EngineEvent) -> None:
        self.ui.event_signal.emit(event)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(f"{code}: {message}")

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_event_ui(self, event: EngineEvent) -> None:
        if event.kind == EventKind.RING:
            alarm = self.engine.get_alarm(event.alarm_id)
            if alarm is not None:
                self.overlay.show_ringing(alarm)
        elif event.kind == EventKind.STEP:
            self.overlay.set_steps(int(event.payload.get("steps", 0)))
        elif event.kind == EventKind.PHOTO_RESULT:
            self.overlay.set_photo_result(
                float(event.payload.get("similarity", 0.0)),
                bool(event.payload.get("is_similar")),
            )
        elif event.kind == EventKind.DISMISSED:
            self.tray.showMessage("Good morning!", "Alarm dismissed ☀️")

    def _on_error_ui(self, msg: str) -> None:
        self.overlay.show_error(msg)

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        if to_state == SessionState.RINGING.value:
            self.tray.setIcon(_create_icon(ICON_RINGING))
        elif to_state == SessionState.SNOOZED.value:
            self.tray.setIcon(_create_icon(ICON_SNOOZED))
            self.overlay.hide_with_delay(400)
        elif to_state == SessionState.IDLE.value:
            if not self.controller.pending_snoozes():
                self.tray.setIcon(_create_icon(ICON_IDLE))
            self.overlay.hide_with_delay(400)
        self._refresh_tooltip()

    def _refresh_tooltip(self) -> None:
        session = self.controller.session
        if session is not None:
            self.tray.setToolTip(f"Wake Proof: {session.alarm.title} ringing")
            return
        alarm = self.engine.next_alarm()
        if alarm is None:
            self.tray.setToolTip("Wake Proof: no alarms")
            return
        self.tray.setToolTip(
            f"Wake Proof: next {alarm.hour:02d}:{alarm.minute:02d} "
            f"(in {self.engine.minutes_until_next()} min)"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(on_trigger=self.controller.snooze)
        except Exception as exc:
            logger.warning("Snooze hotkey disabled: %s", exc)
        self.poll_timer.start()
        return self.app.exec()

    def quit(self) -> None:
        self.poll_timer.stop()
        self.hotkey.stop()
        self.photo_worker.cancel()
        self.engine.shutdown()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
