"""Shared plumbing for interactive sensor calibration sessions."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from aquadash.config import Settings
from aquadash.errors import (
    CalibrationNotReady,
    CalibrationStateError,
    CommandPublishError,
    PayloadParseError,
)
from aquadash.services.commands import CommandChannel
from aquadash.services.liveness import Clock, utcnow
from aquadash.services.parser import as_number, decode_payload
from aquadash.services.transport import MqttSession, Subscription

logger = logging.getLogger(__name__)


class SubmissionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    ERROR = "error"


class CalibrationPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference_value: float
    voltage: float
    temperature: Optional[float] = None
    captured_at: datetime


class LiveReadingCursor:
    """Most recent voltage/raw/temperature seen for one sensor.

    Zero and missing values never overwrite a previous reading, so a device
    that briefly reports 0 V keeps showing the last real voltage.
    """

    def __init__(self, sensor: str, default_temperature: float = 25.0):
        self.sensor = sensor
        self.voltage: float = 0.0
        self.raw: float = 0.0
        self.temperature: float = float(default_temperature)
        self.updated_at: datetime | None = None

    def update(self, payload: Mapping[str, Any], now: datetime | None = None) -> bool:
        changed = False
        section = payload.get(self.sensor)
        if isinstance(section, Mapping):
            voltage = as_number(section.get("voltage"))
            if voltage:
                self.voltage = voltage
                changed = True
            raw = as_number(section.get("raw"))
            if raw:
                self.raw = raw
                changed = True
        temperature = payload.get("temperature")
        if isinstance(temperature, Mapping):
            value = as_number(temperature.get("value"))
            if value:
                self.temperature = value
                changed = True
        if changed:
            self.updated_at = now
        return changed

    def as_dict(self) -> Dict[str, Any]:
        return {
            "voltage": self.voltage,
            "raw": self.raw,
            "temperature": self.temperature,
            "updated_at": self.updated_at,
        }


class CalibrationSession:
    """One operator's calibration of one sensor on one device.

    Subclasses supply ``sensor``, :meth:`compute_model` and
    :meth:`build_payload`; this class owns the live-reading subscription,
    readiness checks and the submission lifecycle.
    """

    sensor: str = ""

    def __init__(
        self,
        device_id: str,
        settings: Settings,
        mqtt: MqttSession,
        commands: CommandChannel,
        *,
        clock: Clock = utcnow,
        session_id: str | None = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.device_id = device_id
        self.settings = settings
        self.mqtt = mqtt
        self.commands = commands
        self._clock = clock
        self.cursor = LiveReadingCursor(self.sensor, settings.calibration_default_temperature_c)
        self.points: List[CalibrationPoint] = []
        self.submission = SubmissionState.IDLE
        self.last_error: Optional[str] = None
        self.last_payload: Optional[Dict[str, Any]] = None
        self.created_at = clock()
        self.last_activity_at = self.created_at
        self.closed = False
        self._subscription: Subscription | None = None

    @property
    def data_topic(self) -> str:
        return self.settings.device_topic(self.device_id, "data")

    @property
    def connected(self) -> bool:
        return self.mqtt.connected

    async def open(self) -> None:
        if self._subscription is None:
            self._subscription = await self.mqtt.subscribe(self.data_topic, self._on_message, qos=1)
        logger.info(
            "Opened %s calibration for %s",
            self.sensor,
            self.device_id,
            extra={"device_id": self.device_id, "session_id": self.id},
        )

    async def close(self) -> None:
        self.closed = True
        self.points = []
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    def _on_message(self, topic: str, payload: bytes) -> None:
        if self.closed:
            return
        try:
            data = decode_payload(payload)
        except PayloadParseError as exc:
            logger.debug("Ignoring unreadable calibration reading on %s: %s", topic, exc)
            return
        self.cursor.update(data, now=self._clock())

    def readiness_problems(self) -> List[str]:
        problems: List[str] = []
        if not self.cursor.voltage > 0:
            problems.append("no live voltage reading")
        if not self.cursor.temperature > 0:
            problems.append("no valid temperature reading")
        if not self.connected:
            problems.append("broker not connected")
        return problems

    @property
    def ready(self) -> bool:
        return not self.readiness_problems()

    def ensure_ready(self) -> None:
        problems = self.readiness_problems()
        if problems:
            raise CalibrationNotReady("; ".join(problems))

    def ensure_open(self) -> None:
        if self.closed:
            raise CalibrationStateError(f"calibration session {self.id} is closed")

    def compute_model(self) -> Optional[BaseModel]:
        raise NotImplementedError

    def build_payload(self) -> Dict[str, Any]:
        raise NotImplementedError

    def reset(self) -> None:
        self.ensure_open()
        self.points = []
        if self.submission != SubmissionState.SUBMITTING:
            self.submission = SubmissionState.IDLE
            self.last_error = None

    async def submit(self) -> Dict[str, Any]:
        self.ensure_open()
        payload = self.build_payload()
        await self._submit(payload)
        return payload

    async def _submit(self, payload: Dict[str, Any]) -> None:
        if self.submission == SubmissionState.SUBMITTING:
            raise CalibrationStateError("a calibration submission is already in progress")
        self.submission = SubmissionState.SUBMITTING
        self.last_error = None
        try:
            await self.commands.send_calibration(self.device_id, payload)
        except CommandPublishError as exc:
            if not self.closed:
                self.submission = SubmissionState.ERROR
                self.last_error = str(exc)
            raise
        if self.closed:
            logger.debug("Calibration session %s closed before the publish completed", self.id)
            return
        self.submission = SubmissionState.SUBMITTED
        self.last_payload = payload

    def describe(self) -> Dict[str, Any]:
        model = self.compute_model()
        return {
            "id": self.id,
            "device_id": self.device_id,
            "sensor": self.sensor,
            "created_at": self.created_at,
            "last_activity_at": self.last_activity_at,
            "live": self.cursor.as_dict(),
            "ready": self.ready,
            "readiness_problems": self.readiness_problems(),
            "points": [point.model_dump() for point in self.points],
            "model": model.model_dump() if model is not None else None,
            "submission": self.submission.value,
            "last_error": self.last_error,
            "last_payload": self.last_payload,
        }
