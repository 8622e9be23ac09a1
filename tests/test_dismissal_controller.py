"""Tests for DismissalController."""

from __future__ import annotations

import pytest

from errors import (
    CONFIGURATION_ERROR,
    DECODE_ERROR,
    SENSOR_UNAVAILABLE,
    SNOOZE_EXHAUSTED,
    VERIFICATION_FAILED,
    ConfigurationError,
    StateConflictError,
)
from fakes import FakeNotifier, make_rig
from models import (
    Alarm,
    BothDismissal,
    DismissType,
    PhotoDismissal,
    SessionState,
    StepsDismissal,
)

MINUTE_MS = 60_000


def _alarm(alarm_id: str = "a", dismissal=None, **kwargs) -> Alarm:  # noqa: ANN001, ANN003
    return Alarm(
        id=alarm_id,
        title=f"Alarm {alarm_id}",
        hour=7,
        minute=0,
        dismissal=dismissal or StepsDismissal(required_steps=20),
        **kwargs,
    )


# ---------------------------------------------------------------
# Steps
# ---------------------------------------------------------------

def test_steps_alarm_dismissed_after_walking() -> None:
    rig = make_rig()
    session = rig.controller.ring(_alarm())
    ring_time = rig.clock.now

    assert rig.controller.state == SessionState.RINGING
    assert session.steps_active is True
    assert rig.notifier.started == ["a"]
    assert rig.history.entries[0].dismiss_type == DismissType.UNKNOWN

    rig.walk(19)
    assert rig.controller.state == SessionState.RINGING
    assert session.current_steps == 19

    rig.walk(1)
    assert rig.controller.state == SessionState.IDLE
    assert rig.controller.session is None

    entry = rig.history.entries[0]
    assert entry.dismiss_type == DismissType.STEPS
    assert entry.steps_taken == 20
    assert entry.dismiss_time - entry.ring_time == rig.clock.now - ring_time == 10_000
    assert rig.states == [
        (SessionState.IDLE, SessionState.RINGING),
        (SessionState.RINGING, SessionState.DISMISSED),
        (SessionState.DISMISSED, SessionState.IDLE),
    ]
    assert rig.notifier.stopped == ["a"]
    assert rig.capture.released == 1
    kinds = rig.event_kinds()
    assert kinds[0] == "ring"
    assert kinds.count("step") == 20
    assert kinds[-2:] == ["steps_completed", "dismissed"]


def test_extra_samples_after_dismissal_are_ignored() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(dismissal=StepsDismissal(required_steps=3)))
    rig.walk(3)
    events_before = len(rig.events)

    rig.walk(5)

    assert len(rig.events) == events_before
    assert len(rig.history.entries) == 1


def test_missing_sensor_keeps_ringing_and_reports() -> None:
    rig = make_rig(motion_available=False)
    session = rig.controller.ring(_alarm())

    assert rig.controller.state == SessionState.RINGING
    assert session.steps_active is False
    assert rig.errors == [SENSOR_UNAVAILABLE]

    assert rig.controller.force_stop() is True
    assert rig.history.entries[0].dismiss_type == DismissType.FORCE_STOP


# ---------------------------------------------------------------
# Photo
# ---------------------------------------------------------------

def test_photo_retry_until_match() -> None:
    rig = make_rig()
    alarm = _alarm(dismissal=PhotoDismissal(reference_photo="ref", similarity_threshold=0.85))
    session = rig.controller.ring(alarm)
    assert rig.source.started == 0

    failed = rig.controller.submit_photo("bad")
    assert failed.is_similar is False
    assert failed.similarity == pytest.approx(1 / 3)
    assert rig.controller.state == SessionState.RINGING
    assert rig.errors == [VERIFICATION_FAILED]
    assert rig.history.entries[0].resolved is False
    assert session.photo_attempts[0].failure_reason == "below threshold"

    passed = rig.controller.submit_photo("good")
    assert passed.is_similar is True
    assert rig.controller.state == SessionState.IDLE

    entry = rig.history.entries[0]
    assert entry.dismiss_type == DismissType.PHOTO
    assert entry.photo_similarity == pytest.approx(1.0)
    assert entry.photo_path == "good"
    assert len(rig.history.entries) == 1


def test_undecodable_photo_reports_decode_error() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(dismissal=PhotoDismissal(reference_photo="ref")))

    result = rig.controller.submit_photo("corrupt.jpg")

    assert result.is_similar is False
    assert result.similarity == 0.0
    assert result.code == DECODE_ERROR
    assert rig.errors == [DECODE_ERROR]
    assert rig.controller.state == SessionState.RINGING


def test_photo_for_steps_alarm_is_rejected() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm())

    result = rig.controller.submit_photo("good")

    assert result.is_similar is False
    assert result.code == CONFIGURATION_ERROR
    assert rig.controller.state == SessionState.RINGING


def test_photo_without_ringing_alarm_raises() -> None:
    rig = make_rig()
    with pytest.raises(StateConflictError):
        rig.controller.submit_photo("good")


def test_photo_alarm_without_reference_cannot_ring() -> None:
    rig = make_rig()
    with pytest.raises(ConfigurationError):
        rig.controller.ring(_alarm(dismissal=PhotoDismissal(reference_photo=None)))

    assert rig.controller.state == SessionState.IDLE
    assert rig.history.entries == []
    assert rig.notifier.started == []


# ---------------------------------------------------------------
# Both
# ---------------------------------------------------------------

def test_both_needs_photo_and_steps() -> None:
    rig = make_rig()
    alarm = _alarm(dismissal=BothDismissal(required_steps=5, reference_photo="ref"))
    session = rig.controller.ring(alarm)

    assert rig.controller.submit_photo("good").is_similar is True
    assert rig.controller.state == SessionState.RINGING
    assert session.photo_completed is True

    rig.walk(5)
    assert rig.controller.state == SessionState.IDLE

    entry = rig.history.entries[0]
    assert entry.dismiss_type == DismissType.BOTH
    assert entry.steps_taken == 5
    assert entry.photo_path == "good"
    assert entry.photo_similarity == pytest.approx(1.0)


def test_both_steps_first_then_photo() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(dismissal=BothDismissal(required_steps=3, reference_photo="ref")))

    rig.walk(3)
    assert rig.controller.state == SessionState.RINGING

    rig.controller.submit_photo("bad")
    assert rig.controller.state == SessionState.RINGING

    rig.controller.submit_photo("good")
    assert rig.controller.state == SessionState.IDLE
    assert rig.history.entries[0].dismiss_type == DismissType.BOTH


# ---------------------------------------------------------------
# Single session
# ---------------------------------------------------------------

def test_second_ring_is_rejected() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm("a"))

    with pytest.raises(StateConflictError):
        rig.controller.ring(_alarm("b"))

    assert rig.controller.session.alarm.id == "a"
    assert len(rig.history.entries) == 1


def test_notifier_failure_does_not_block_ring() -> None:
    rig = make_rig(notifier=FakeNotifier(fail=True))
    rig.controller.ring(_alarm())
    assert rig.controller.state == SessionState.RINGING


# ---------------------------------------------------------------
# Snooze
# ---------------------------------------------------------------

def test_snooze_records_history_and_rings_again_after_interval() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(snooze_minutes=5))
    rig.walk(3)

    assert rig.controller.snooze() is True

    entry = rig.history.entries[0]
    assert entry.dismiss_type == DismissType.SNOOZE
    assert entry.was_snoozed is True
    assert entry.snooze_count == 1
    assert entry.steps_taken == 3
    assert rig.controller.state == SessionState.IDLE
    assert (SessionState.RINGING, SessionState.SNOOZED) in rig.states
    assert rig.source.stopped >= 1
    assert rig.notifier.stopped == ["a"]

    handle = rig.controller.pending_snoozes()["a"]
    assert handle.due_time == rig.clock.now + 5 * MINUTE_MS

    rig.timers.advance(5 * MINUTE_MS - 1)
    assert rig.controller.state == SessionState.IDLE
    assert len(rig.history.entries) == 1

    rig.timers.advance(1)
    assert rig.controller.state == SessionState.RINGING
    assert rig.controller.pending_snoozes() == {}
    assert len(rig.history.entries) == 2
    second = rig.history.entries[1]
    assert second.resolved is False
    assert second.snooze_count == 1


def test_snooze_limit_is_enforced() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(snooze_limit=1, snooze_minutes=1))

    assert rig.controller.snooze() is True
    rig.timers.advance(MINUTE_MS)
    assert rig.controller.state == SessionState.RINGING

    assert rig.controller.snooze() is False
    assert rig.errors == [SNOOZE_EXHAUSTED]
    assert rig.controller.state == SessionState.RINGING
    assert rig.controller.snoozes_used("a") == 1


def test_snooze_count_resets_after_dismissal() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(dismissal=StepsDismissal(required_steps=2), snooze_minutes=1))
    rig.controller.snooze()
    rig.timers.advance(MINUTE_MS)
    rig.walk(2)

    assert rig.controller.state == SessionState.IDLE
    assert rig.controller.snoozes_used("a") == 0


def test_snooze_without_ringing_alarm() -> None:
    rig = make_rig()
    assert rig.controller.snooze() is False


def test_deleting_alarm_cancels_pending_snooze() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm(snooze_minutes=5))
    rig.controller.snooze()

    rig.controller.alarm_deleted("a")

    assert rig.controller.pending_snoozes() == {}
    rig.timers.advance(10 * MINUTE_MS)
    assert rig.controller.state == SessionState.IDLE
    assert len(rig.history.entries) == 1


def test_disabling_alarm_cancels_pending_snooze() -> None:
    rig = make_rig()
    alarm = _alarm(snooze_minutes=5)
    rig.controller.ring(alarm)
    rig.controller.snooze()

    alarm.enabled = False
    rig.controller.refresh_alarm(alarm)

    rig.timers.advance(10 * MINUTE_MS)
    assert rig.controller.state == SessionState.IDLE


def test_snooze_expiring_during_other_ring_retries_later() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm("a", snooze_minutes=5))
    rig.controller.snooze()
    rig.controller.ring(_alarm("b"))

    rig.timers.advance(5 * MINUTE_MS)
    assert rig.controller.session.alarm.id == "b"
    assert "a" in rig.controller.pending_snoozes()

    rig.controller.force_stop()
    rig.timers.advance(MINUTE_MS)
    assert rig.controller.session.alarm.id == "a"


# ---------------------------------------------------------------
# Force stop / shutdown
# ---------------------------------------------------------------

def test_force_stop_records_partial_progress() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm())
    rig.walk(2)

    assert rig.controller.force_stop() is True

    entry = rig.history.entries[0]
    assert entry.dismiss_type == DismissType.FORCE_STOP
    assert entry.steps_taken == 2
    assert rig.controller.state == SessionState.IDLE
    assert "force_stopped" in rig.event_kinds()
    assert rig.controller.force_stop() is False


def test_shutdown_cancels_everything() -> None:
    rig = make_rig()
    rig.controller.ring(_alarm("a", snooze_minutes=5))
    rig.controller.snooze()
    rig.controller.ring(_alarm("b"))

    rig.controller.shutdown()

    assert rig.controller.session is None
    assert rig.controller.pending_snoozes() == {}
    rig.timers.advance(10 * MINUTE_MS)
    assert rig.controller.state == SessionState.IDLE
