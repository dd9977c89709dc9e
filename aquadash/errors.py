"""Exception types shared across ingestion, calibration and command flows."""
from __future__ import annotations


class AquadashError(Exception):
    """Base class for errors raised by this service."""


class PayloadParseError(AquadashError, ValueError):
    """Telemetry payload is not a JSON object."""


class ThresholdValidationError(AquadashError, ValueError):
    """Operator supplied thresholds are incomplete or inverted."""


class CalibrationValidationError(AquadashError, ValueError):
    """Calibration input rejected before anything is sent to the device."""


class CalibrationNotReady(CalibrationValidationError):
    """Submission attempted before the readiness conditions hold."""


class CalibrationStateError(AquadashError, RuntimeError):
    """Operation not allowed in the session's current state."""


class CommandPublishError(AquadashError, RuntimeError):
    """A command was not acknowledged by the broker."""


class TransportNotConnected(CommandPublishError):
    """No broker connection is available for publishing."""


class CommandTimeout(CommandPublishError):
    """The broker did not acknowledge the publish in time."""
