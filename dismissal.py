"""State-machine based dismissal orchestration.

IDLE -> RINGING -> DISMISSED -> IDLE
                -> SNOOZED   -> IDLE   (re-enters RINGING when the snooze timer fires)
                -> IDLE                (force stop)

Only one ringing session exists at a time. Step and photo callbacks arrive
from worker threads and are serialized by a re-entrant lock; a callback that
belongs to a session which already ended is ignored.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from clock import start_thread_timer
from errors import (
    CONFIGURATION_ERROR,
    ERROR_MESSAGES,
    SENSOR_UNAVAILABLE,
    SNOOZE_EXHAUSTED,
    VERIFICATION_FAILED,
    AlarmEngineError,
    ConfigurationError,
    StateConflictError,
)
from history import HistoryRecorder
from interfaces import CaptureDevice, Clock, Notifier, TimerFactory
from logger import setup_logger
from models import (
    Alarm,
    BothDismissal,
    DismissType,
    EngineEvent,
    EventKind,
    HistoryEntry,
    ImageHandle,
    PhotoAttempt,
    PhotoDismissal,
    RingingSession,
    SessionState,
    SnoozeHandle,
    StepsDismissal,
    VerificationResult,
    handle_label,
    new_id,
)
from similarity import PhotoVerificationWorker, SimilarityVerifier
from step_detector import StepDetector

logger = setup_logger("dismissal")

StateCallback = Callable[[SessionState, SessionState], None]
EventCallback = Callable[[EngineEvent], None]
ErrorCallback = Callable[[str, str], None]

SNOOZE_RETRY_S = 60


class DismissalController:
    def __init__(
        self,
        step_detector: StepDetector,
        verifier: SimilarityVerifier,
        history: HistoryRecorder,
        clock: Clock,
        timer_factory: TimerFactory = start_thread_timer,
        notifier: Optional[Notifier] = None,
        capture_device: Optional[CaptureDevice] = None,
        on_state_change: Optional[StateCallback] = None,
        on_event: Optional[EventCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._step_detector = step_detector
        self._verifier = verifier
        self._history = history
        self._clock = clock
        self._timer_factory = timer_factory
        self._notifier = notifier
        self._capture_device = capture_device
        self._on_state_change = on_state_change
        self._on_event = on_event
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[RingingSession] = None
        self._photo_worker: Optional[PhotoVerificationWorker] = None
        self._snoozes: dict[str, SnoozeHandle] = {}
        self._snooze_counts: dict[str, int] = {}

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[RingingSession]:
        return self._session

    def pending_snoozes(self) -> dict[str, SnoozeHandle]:
        with self._lock:
            return dict(self._snoozes)

    def snoozes_used(self, alarm_id: str) -> int:
        return self._snooze_counts.get(alarm_id, 0)

    # ------------------------------------------------------------------
    # Entering RINGING
    # ------------------------------------------------------------------

    def ring(self, alarm: Alarm) -> RingingSession:
        """Start a ringing session; raises StateConflictError or ConfigurationError."""
        with self._lock:
            if self._session is not None:
                logger.warning(
                    "Rejected ring of %s: %s is already ringing", alarm.id, self._session.alarm.id
                )
                raise StateConflictError(
                    f"alarm {self._session.alarm.id} is already ringing"
                )
            dismissal = alarm.dismissal
            if isinstance(dismissal, (PhotoDismissal, BothDismissal)) and not dismissal.reference_photo:
                logger.warning("Alarm %s requires a photo but has no reference", alarm.id)
                raise ConfigurationError(
                    f"alarm '{alarm.title}' requires a photo but has no reference image"
                )

            pending = self._snoozes.pop(alarm.id, None)
            if pending is not None:
                pending.cancel()

            now = self._clock.now_ms()
            entry = self._history.record(
                HistoryEntry(
                    id=new_id(),
                    alarm_id=alarm.id,
                    alarm_title=alarm.title,
                    ring_time=now,
                    snooze_count=self._snooze_counts.get(alarm.id, 0),
                )
            )
            session = RingingSession(alarm=alarm, history_entry_id=entry.id, ring_time=now)
            self._session = session
            self._transition(SessionState.RINGING)
            logger.info("Alarm %s (%s) ringing, method=%s", alarm.id, alarm.title, dismissal.method.value)
            self._safe_notify_started(alarm)
            self._emit_event(EventKind.RING, alarm.id, method=dismissal.method.value)

            if isinstance(dismissal, (PhotoDismissal, BothDismissal)):
                self._verifier.set_reference(dismissal.reference_photo)
            if isinstance(dismissal, (StepsDismissal, BothDismissal)):
                self._start_steps(session, dismissal.required_steps)
            return session

    def _start_steps(self, session: RingingSession, target: int) -> None:
        started = self._step_detector.start(
            target,
            on_step=lambda count: self._handle_step(session, count),
            on_complete=lambda: self._handle_steps_complete(session),
        )
        session.steps_active = started
        if not started:
            self._emit_error(SENSOR_UNAVAILABLE, ERROR_MESSAGES[SENSOR_UNAVAILABLE])

    # ------------------------------------------------------------------
    # Verification channels
    # ------------------------------------------------------------------

    def _handle_step(self, session: RingingSession, count: int) -> None:
        with self._lock:
            if self._session is not session:
                return
            session.current_steps = count
            session.step_progress = self._step_detector.progress
            self._emit_event(
                EventKind.STEP, session.alarm.id, steps=count, progress=session.step_progress
            )

    def _handle_steps_complete(self, session: RingingSession) -> None:
        with self._lock:
            if self._session is not session:
                return
            session.steps_completed = True
            session.steps_active = False
            session.step_progress = 1.0
            self._emit_event(EventKind.STEPS_COMPLETED, session.alarm.id, steps=session.current_steps)
            self._dismiss_if_verified(session)

    def submit_photo(self, handle: ImageHandle) -> VerificationResult:
        """Verify a captured photo for the ringing alarm; failed attempts leave it ringing."""
        session, threshold, done = self._photo_context()
        if done is not None:
            return done
        result = self._verifier.verify(handle, threshold)
        self._apply_photo_result(session, handle, result)
        return result

    def submit_photo_async(self, handle: ImageHandle, worker: PhotoVerificationWorker) -> bool:
        """Verify on ``worker``'s thread; returns False if nothing was started."""
        session, threshold, done = self._photo_context()
        if done is not None:
            return False
        with self._lock:
            self._photo_worker = worker
        return worker.submit(
            handle, threshold, lambda result: self._apply_photo_result(session, handle, result)
        )

    def _photo_context(self) -> tuple[RingingSession, float, Optional[VerificationResult]]:
        with self._lock:
            session = self._session
            if session is None:
                raise StateConflictError("no alarm is ringing")
            dismissal = session.alarm.dismissal
            if not isinstance(dismissal, (PhotoDismissal, BothDismissal)):
                return session, 0.0, VerificationResult(
                    False, 0.0, error="this alarm is dismissed by walking", code=CONFIGURATION_ERROR
                )
            if session.photo_completed:
                return session, dismissal.similarity_threshold, VerificationResult(
                    True, session.last_similarity or 0.0
                )
            return session, dismissal.similarity_threshold, None

    def _apply_photo_result(
        self, session: RingingSession, handle: ImageHandle, result: VerificationResult
    ) -> None:
        with self._lock:
            if self._session is not session or session.photo_completed:
                return
            label = handle_label(handle)
            reason = result.error or ("" if result.is_similar else "below threshold")
            session.photo_attempts.append(
                PhotoAttempt(self._clock.now_ms(), label, result.similarity, reason)
            )
            session.last_photo = label
            session.last_similarity = result.similarity
            self._emit_event(
                EventKind.PHOTO_RESULT,
                session.alarm.id,
                similarity=result.similarity,
                is_similar=result.is_similar,
                error=result.error,
            )
            if not result.is_similar:
                if result.code:
                    self._emit_error(result.code, result.error)
                else:
                    self._emit_error(
                        VERIFICATION_FAILED,
                        f"similarity {result.similarity:.0%} is below the threshold",
                    )
                return
            session.photo_completed = True
            self._dismiss_if_verified(session)

    def _dismiss_if_verified(self, session: RingingSession) -> None:
        if not session.verified:
            return
        dismissal = session.alarm.dismissal
        if isinstance(dismissal, StepsDismissal):
            self._finish(session, DismissType.STEPS, steps_taken=dismissal.required_steps)
        elif isinstance(dismissal, PhotoDismissal):
            self._finish(
                session,
                DismissType.PHOTO,
                photo_similarity=session.last_similarity,
                photo_path=session.last_photo,
            )
        else:
            self._finish(
                session,
                DismissType.BOTH,
                steps_taken=session.current_steps,
                photo_similarity=session.last_similarity,
                photo_path=session.last_photo,
            )

    def _finish(self, session: RingingSession, dismiss_type: DismissType, **fields: object) -> None:
        alarm = session.alarm
        now = self._clock.now_ms()
        self._teardown(session)
        self._history.resolve(session.history_entry_id, now, dismiss_type, **fields)
        self._session = None
        self._snooze_counts.pop(alarm.id, None)
        self._transition(SessionState.DISMISSED)
        logger.info("Alarm %s dismissed by %s", alarm.id, dismiss_type.value)
        self._emit_event(EventKind.DISMISSED, alarm.id, dismiss_type=dismiss_type.value, **fields)
        self._transition(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Snooze / force stop
    # ------------------------------------------------------------------

    def snooze(self) -> bool:
        with self._lock:
            session = self._session
            if session is None:
                return False
            alarm = session.alarm
            used = self._snooze_counts.get(alarm.id, 0)
            if used >= alarm.snooze_limit:
                logger.info("Alarm %s has no snoozes left (%d used)", alarm.id, used)
                self._emit_error(SNOOZE_EXHAUSTED, ERROR_MESSAGES[SNOOZE_EXHAUSTED])
                return False
            used += 1
            self._snooze_counts[alarm.id] = used

            now = self._clock.now_ms()
            self._teardown(session)
            self._history.resolve(
                session.history_entry_id,
                now,
                DismissType.SNOOZE,
                was_snoozed=True,
                snooze_count=used,
                steps_taken=session.current_steps if session.current_steps else None,
            )
            self._session = None
            self._transition(SessionState.SNOOZED)
            handle = self._arm_snooze(alarm, alarm.snooze_minutes * 60)
            logger.info("Alarm %s snoozed for %d min (%d/%d)", alarm.id, alarm.snooze_minutes, used, alarm.snooze_limit)
            self._emit_event(EventKind.SNOOZED, alarm.id, snooze_count=used, due_time=handle.due_time)
            self._transition(SessionState.IDLE)
            return True

    def _arm_snooze(self, alarm: Alarm, delay_s: float) -> SnoozeHandle:
        handle = SnoozeHandle(alarm=alarm, due_time=self._clock.now_ms() + int(delay_s * 1000), timer=None)
        handle.timer = self._timer_factory(delay_s, lambda: self._handle_snooze_expired(handle))
        self._snoozes[alarm.id] = handle
        return handle

    def _handle_snooze_expired(self, handle: SnoozeHandle) -> None:
        with self._lock:
            alarm = handle.alarm
            if self._snoozes.get(alarm.id) is not handle:
                return
            del self._snoozes[alarm.id]
            if self._session is not None:
                logger.warning(
                    "Snooze of %s expired while %s rings, retrying in %ds",
                    alarm.id,
                    self._session.alarm.id,
                    SNOOZE_RETRY_S,
                )
                self._arm_snooze(alarm, SNOOZE_RETRY_S)
                return
            try:
                self.ring(alarm)
            except AlarmEngineError as exc:
                self._emit_error(exc.code, exc.message)

    def cancel_snooze(self, alarm_id: str) -> bool:
        with self._lock:
            handle = self._snoozes.pop(alarm_id, None)
            if handle is None:
                return False
            handle.cancel()
            logger.info("Pending snooze of %s cancelled", alarm_id)
            return True

    def refresh_alarm(self, alarm: Alarm) -> None:
        """Point a pending snooze at the edited alarm, or drop it if disabled."""
        with self._lock:
            handle = self._snoozes.get(alarm.id)
            if handle is None:
                return
            if not alarm.enabled:
                self.cancel_snooze(alarm.id)
                return
            handle.alarm = alarm

    def force_stop(self, alarm_id: Optional[str] = None) -> bool:
        """Stop the ringing alarm (or ``alarm_id``) without proof and cancel its snooze."""
        with self._lock:
            stopped = False
            session = self._session
            if session is not None and alarm_id in (None, session.alarm.id):
                alarm_id = session.alarm.id
                now = self._clock.now_ms()
                self._teardown(session)
                self._history.resolve(
                    session.history_entry_id,
                    now,
                    DismissType.FORCE_STOP,
                    steps_taken=session.current_steps if session.current_steps else None,
                    photo_similarity=session.last_similarity,
                    photo_path=session.last_photo,
                )
                self._session = None
                logger.info("Alarm %s force-stopped", alarm_id)
                self._emit_event(EventKind.FORCE_STOPPED, alarm_id)
                self._transition(SessionState.IDLE)
                stopped = True
            if alarm_id is not None:
                stopped = self.cancel_snooze(alarm_id) or stopped
                self._snooze_counts.pop(alarm_id, None)
            return stopped

    def alarm_deleted(self, alarm_id: str) -> None:
        self.force_stop(alarm_id)

    def shutdown(self) -> None:
        with self._lock:
            self.force_stop()
            for alarm_id in list(self._snoozes):
                self.cancel_snooze(alarm_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _teardown(self, session: RingingSession) -> None:
        self._step_detector.stop()
        session.steps_active = False
        if self._photo_worker is not None:
            self._photo_worker.cancel()
            self._photo_worker = None
        self._verifier.reset()
        self._safe_notify_stopped(session.alarm)
        self._safe_release_capture()

    def _safe_notify_started(self, alarm: Alarm) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.ring_started(alarm)
        except Exception as exc:
            logger.warning("Notifier failed to start: %s", exc)

    def _safe_notify_stopped(self, alarm: Alarm) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.ring_stopped(alarm)
        except Exception as exc:
            logger.warning("Notifier failed to stop: %s", exc)

    def _safe_release_capture(self) -> None:
        if self._capture_device is None:
            return
        try:
            self._capture_device.release()
        except Exception as exc:
            logger.warning("Capture device failed to release: %s", exc)

    def _emit_event(self, kind: EventKind, alarm_id: str, **payload: object) -> None:
        if self._on_event:
            self._on_event(EngineEvent(kind=kind, alarm_id=alarm_id, payload=dict(payload)))

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
