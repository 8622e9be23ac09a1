"""Always-on-top window shown while an alarm rings."""

from __future__ import annotations

from typing import Optional

from models import Alarm, BothDismissal, PhotoDismissal, StepsDismissal

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QProgressBar, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QProgressBar = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

_LABEL_STYLE = (
    "color: white; font-size: 18px; padding: 16px;"
    "background: rgba(200,30,60,220); border-radius: 12px;"
)
_ERROR_STYLE = (
    "color: #FFE08A; font-size: 16px; padding: 8px 16px;"
    "background: rgba(0,0,0,200); border-radius: 8px;"
)


def describe_task(alarm: Alarm) -> str:
    dismissal = alarm.dismissal
    if isinstance(dismissal, StepsDismissal):
        return f"Walk {dismissal.required_steps} steps to stop the alarm"
    if isinstance(dismissal, PhotoDismissal):
        return "Take a photo matching your reference to stop the alarm"
    if isinstance(dismissal, BothDismissal):
        return f"Walk {dismissal.required_steps} steps and take the reference photo"
    return ""


class RingingOverlay(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        self._title = QLabel("")
        self._title.setWordWrap(True)
        self._title.setStyleSheet(_LABEL_STYLE)
        self._steps = QProgressBar()
        self._steps.setFormat("%v / %m steps")
        self._photo = QLabel("")
        self._status = QLabel("")
        self._status.setStyleSheet(_ERROR_STYLE)
        self._status.hide()

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._title)
        layout.addWidget(self._steps)
        layout.addWidget(self._photo)
        layout.addWidget(self._status)
        self.setLayout(layout)

        self._hide_timer: Optional[QTimer] = None

    def _center_top(self) -> None:
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + 40
        self.move(x, y)

    def show_ringing(self, alarm: Alarm) -> None:
        self._cancel_hide_timer()
        self._title.setText(f"⏰ {alarm.title}\n{describe_task(alarm)}")
        dismissal = alarm.dismissal
        if isinstance(dismissal, (StepsDismissal, BothDismissal)):
            self._steps.setMaximum(dismissal.required_steps)
            self._steps.setValue(0)
            self._steps.show()
        else:
            self._steps.hide()
        self._photo.setText("")
        self._photo.setVisible(isinstance(dismissal, (PhotoDismissal, BothDismissal)))
        self._status.hide()
        self._center_top()
        self.show()

    def set_steps(self, steps: int) -> None:
        self._steps.setValue(min(steps, self._steps.maximum()))

    def set_photo_result(self, similarity: float, is_similar: bool) -> None:
        mark = "✓" if is_similar else "✗"
        self._photo.setText(f"Photo match {similarity:.0%} {mark}")

    def show_error(self, text: str) -> None:
        self._status.setText(f"⚠️ {text}")
        self._status.show()
        if not self.isVisible():
            self._center_top()
            self.show()
            self.hide_with_delay(2500)

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
