"""Shared error codes, user-facing messages and engine exceptions."""

from __future__ import annotations

CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
SENSOR_UNAVAILABLE = "SENSOR_UNAVAILABLE"
DECODE_ERROR = "DECODE_ERROR"
STATE_CONFLICT = "STATE_CONFLICT"
SNOOZE_EXHAUSTED = "SNOOZE_EXHAUSTED"
VERIFICATION_FAILED = "VERIFICATION_FAILED"

ERROR_MESSAGES = {
    CONFIGURATION_ERROR: "Alarm is misconfigured and cannot ring.",
    SENSOR_UNAVAILABLE: "Motion or camera sensor is unavailable, use another method or wait.",
    DECODE_ERROR: "Photo could not be read, please retry.",
    STATE_CONFLICT: "Another alarm is already ringing.",
    SNOOZE_EXHAUSTED: "No snoozes left for this alarm.",
    VERIFICATION_FAILED: "Photo does not match the reference, please retry.",
}


class AlarmEngineError(Exception):
    code = VERIFICATION_FAILED

    def __init__(self, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES[self.code])
        self.message = message or ERROR_MESSAGES[self.code]


class ConfigurationError(AlarmEngineError):
    code = CONFIGURATION_ERROR


class SensorUnavailableError(AlarmEngineError):
    code = SENSOR_UNAVAILABLE


class DecodeError(AlarmEngineError):
    code = DECODE_ERROR


class StateConflictError(AlarmEngineError):
    code = STATE_CONFLICT
