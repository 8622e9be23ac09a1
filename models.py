"""Core data models for the alarm engine."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

ImageHandle = Union[str, Path, bytes]

DEFAULT_REQUIRED_STEPS = 20
DEFAULT_SIMILARITY_THRESHOLD = 0.85
DEFAULT_SNOOZE_MINUTES = 5
DEFAULT_SNOOZE_LIMIT = 3
MAX_SNOOZE_LIMIT = 5


class DismissMethod(str, Enum):
    STEPS = "steps"
    PHOTO = "photo"
    BOTH = "both"


class DismissType(str, Enum):
    STEPS = "steps"
    PHOTO = "photo"
    BOTH = "both"
    SNOOZE = "snooze"
    FORCE_STOP = "forceStop"
    UNKNOWN = "unknown"


class SessionState(str, Enum):
    IDLE = "IDLE"
    RINGING = "RINGING"
    DISMISSED = "DISMISSED"
    SNOOZED = "SNOOZED"


class EventKind(str, Enum):
    RING = "ring"
    STEP = "step"
    STEPS_COMPLETED = "steps_completed"
    PHOTO_RESULT = "photo_result"
    DISMISSED = "dismissed"
    SNOOZED = "snoozed"
    FORCE_STOPPED = "force_stopped"


def new_id() -> str:
    return uuid.uuid4().hex


def _check_threshold(value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"similarity threshold must be within [0, 1], got {value}")


def _check_steps(value: int) -> None:
    if value <= 0:
        raise ValueError(f"required steps must be positive, got {value}")


# ---------------------------------------------------------------------------
# Dismissal variants: one case per method, each with only the fields it uses.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepsDismissal:
    required_steps: int = DEFAULT_REQUIRED_STEPS

    def __post_init__(self) -> None:
        _check_steps(self.required_steps)

    @property
    def method(self) -> DismissMethod:
        return DismissMethod.STEPS

    @property
    def requires_steps(self) -> bool:
        return True

    @property
    def requires_photo(self) -> bool:
        return False


@dataclass(frozen=True)
class PhotoDismissal:
    reference_photo: Optional[str] = None
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD

    def __post_init__(self) -> None:
        _check_threshold(self.similarity_threshold)

    @property
    def method(self) -> DismissMethod:
        return DismissMethod.PHOTO

    @property
    def requires_steps(self) -> bool:
        return False

    @property
    def requires_photo(self) -> bool:
        return True


@dataclass(frozen=True)
class BothDismissal:
    required_steps: int = DEFAULT_REQUIRED_STEPS
    reference_photo: Optional[str] = None
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD

    def __post_init__(self) -> None:
        _check_steps(self.required_steps)
        _check_threshold(self.similarity_threshold)

    @property
    def method(self) -> DismissMethod:
        return DismissMethod.BOTH

    @property
    def requires_steps(self) -> bool:
        return True

    @property
    def requires_photo(self) -> bool:
        return True


Dismissal = Union[StepsDismissal, PhotoDismissal, BothDismissal]


def dismissal_from_fields(
    method: str,
    required_steps: int = DEFAULT_REQUIRED_STEPS,
    reference_photo: Optional[str] = None,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> Dismissal:
    kind = DismissMethod(method)
    if kind == DismissMethod.STEPS:
        return StepsDismissal(required_steps=required_steps)
    if kind == DismissMethod.PHOTO:
        return PhotoDismissal(
            reference_photo=reference_photo,
            similarity_threshold=similarity_threshold,
        )
    return BothDismissal(
        required_steps=required_steps,
        reference_photo=reference_photo,
        similarity_threshold=similarity_threshold,
    )


def dismissal_to_fields(dismissal: Dismissal) -> dict[str, Any]:
    data: dict[str, Any] = {"dismiss_method": dismissal.method.value}
    if isinstance(dismissal, (StepsDismissal, BothDismissal)):
        data["required_steps"] = dismissal.required_steps
    if isinstance(dismissal, (PhotoDismissal, BothDismissal)):
        data["reference_photo"] = dismissal.reference_photo
        data["similarity_threshold"] = dismissal.similarity_threshold
    return data


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class Alarm:
    id: str
    title: str
    hour: int
    minute: int
    repeat_days: list[bool] = field(default_factory=lambda: [False] * 7)  # Sun..Sat
    enabled: bool = True
    dismissal: Dismissal = field(default_factory=StepsDismissal)
    volume: float = 1.0
    vibrate: bool = True
    sound: str = "default"
    snooze_limit: int = DEFAULT_SNOOZE_LIMIT
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES
    created_at: int = 0
    last_ring_time: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise ValueError(f"invalid alarm time {self.hour}:{self.minute}")
        if len(self.repeat_days) != 7:
            raise ValueError("repeat_days must have 7 entries (Sun..Sat)")
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError(f"volume must be within [0, 1], got {self.volume}")
        if not 0 <= self.snooze_limit <= MAX_SNOOZE_LIMIT:
            raise ValueError(f"snooze_limit must be within [0, {MAX_SNOOZE_LIMIT}], got {self.snooze_limit}")
        if self.snooze_minutes <= 0:
            raise ValueError("snooze_minutes must be positive")

    @property
    def dismiss_method(self) -> DismissMethod:
        return self.dismissal.method

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "hour": self.hour,
            "minute": self.minute,
            "repeat_days": list(self.repeat_days),
            "enabled": self.enabled,
            "volume": self.volume,
            "vibrate": self.vibrate,
            "sound": self.sound,
            "snooze_limit": self.snooze_limit,
            "snooze_minutes": self.snooze_minutes,
            "created_at": self.created_at,
            "last_ring_time": self.last_ring_time,
        }
        data.update(dismissal_to_fields(self.dismissal))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alarm":
        dismissal = dismissal_from_fields(
            data.get("dismiss_method", DismissMethod.STEPS.value),
            required_steps=int(data.get("required_steps", DEFAULT_REQUIRED_STEPS)),
            reference_photo=data.get("reference_photo"),
            similarity_threshold=float(
                data.get("similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD)
            ),
        )
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            hour=int(data["hour"]),
            minute=int(data["minute"]),
            repeat_days=[bool(d) for d in data.get("repeat_days", [False] * 7)],
            enabled=bool(data.get("enabled", True)),
            dismissal=dismissal,
            volume=float(data.get("volume", 1.0)),
            vibrate=bool(data.get("vibrate", True)),
            sound=str(data.get("sound", "default")),
            snooze_limit=int(data.get("snooze_limit", DEFAULT_SNOOZE_LIMIT)),
            snooze_minutes=int(data.get("snooze_minutes", DEFAULT_SNOOZE_MINUTES)),
            created_at=int(data.get("created_at", 0)),
            last_ring_time=data.get("last_ring_time"),
        )


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    alarm_id: str
    alarm_title: str
    ring_time: int
    dismiss_time: Optional[int] = None
    dismiss_type: DismissType = DismissType.UNKNOWN
    steps_taken: Optional[int] = None
    photo_similarity: Optional[float] = None
    photo_path: Optional[str] = None
    was_snoozed: bool = False
    snooze_count: int = 0
    notes: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.dismiss_time is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["dismiss_type"] = self.dismiss_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["dismiss_type"] = DismissType(values.get("dismiss_type", DismissType.UNKNOWN.value))
        return cls(**values)


# ---------------------------------------------------------------------------
# Transient engine values
# ---------------------------------------------------------------------------


@dataclass
class MotionSample:
    timestamp_ms: int
    x: float
    y: float
    z: float


@dataclass
class StepReading:
    timestamp_ms: int
    x: float
    y: float
    z: float
    magnitude: float


@dataclass
class PhotoAttempt:
    timestamp_ms: int
    photo_path: Optional[str]
    similarity: float
    failure_reason: str = ""


@dataclass
class VerificationResult:
    is_similar: bool
    similarity: float
    error: str = ""
    code: str = ""


@dataclass
class RingingSession:
    alarm: Alarm
    history_entry_id: str
    ring_time: int
    current_steps: int = 0
    step_progress: float = 0.0
    last_photo: Optional[str] = None
    last_similarity: Optional[float] = None
    steps_completed: bool = False
    photo_completed: bool = False
    steps_active: bool = False
    photo_attempts: list[PhotoAttempt] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        dismissal = self.alarm.dismissal
        if isinstance(dismissal, StepsDismissal):
            return self.steps_completed
        if isinstance(dismissal, PhotoDismissal):
            return self.photo_completed
        return self.steps_completed and self.photo_completed


@dataclass
class SnoozeHandle:
    alarm: Alarm
    due_time: int
    timer: Any  # CancellableTimer

    def cancel(self) -> None:
        self.timer.cancel()


@dataclass
class Statistics:
    total: int = 0
    by_type: dict[DismissType, int] = field(
        default_factory=lambda: {kind: 0 for kind in DismissType}
    )
    snoozed: int = 0
    dismissed: int = 0
    average_dismiss_seconds: float = 0.0


@dataclass
class EngineEvent:
    kind: EventKind
    alarm_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreDiff:
    collection: str  # "alarms" | "history"
    action: str  # "add" | "update" | "delete" | "clear"
    item_id: str = ""
    payload: Optional[dict[str, Any]] = None


def handle_label(handle: Optional[ImageHandle]) -> Optional[str]:
    """Printable form of an image handle; in-memory bytes have none."""
    if handle is None or isinstance(handle, bytes):
        return None
    return str(handle)
