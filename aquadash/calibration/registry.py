"""Track open calibration sessions by id."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Type

from aquadash.calibration.base import CalibrationSession
from aquadash.calibration.dissolved_oxygen import DoCalibrationSession
from aquadash.calibration.ph import PhCalibrationSession
from aquadash.calibration.tds import TdsCalibrationSession
from aquadash.config import Settings
from aquadash.errors import CalibrationValidationError
from aquadash.services.commands import CommandChannel
from aquadash.services.liveness import Clock, utcnow
from aquadash.services.transport import MqttSession

logger = logging.getLogger(__name__)

SESSION_TYPES: Dict[str, Type[CalibrationSession]] = {
    "ph": PhCalibrationSession,
    "tds": TdsCalibrationSession,
    "do": DoCalibrationSession,
}


class CalibrationSessionRegistry:
    """Open sessions keyed by id.

    Every lookup through :meth:`get` counts as operator activity. Sessions
    nobody has looked up for ``calibration_session_idle_seconds`` are closed
    by the background sweep.
    """

    def __init__(
        self,
        settings: Settings,
        mqtt: MqttSession,
        commands: CommandChannel,
        *,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.mqtt = mqtt
        self.commands = commands
        self._clock = clock
        self._sessions: Dict[str, CalibrationSession] = {}
        self.idle_seconds = settings.calibration_session_idle_seconds
        self.sweep_interval_seconds = settings.liveness_interval_seconds
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    def __len__(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[CalibrationSession]:
        return list(self._sessions.values())

    async def open(self, device_id: str, sensor: str) -> CalibrationSession:
        session_type = SESSION_TYPES.get(sensor)
        if session_type is None:
            raise CalibrationValidationError(f"unsupported sensor {sensor!r}")
        if not device_id or any(c in device_id for c in "/+#"):
            raise CalibrationValidationError("device id must be a single topic level")
        session = session_type(device_id, self.settings, self.mqtt, self.commands, clock=self._clock)
        await session.open()
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> CalibrationSession | None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity_at = self._clock()
        return session

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("Closed calibration session %s", session_id, extra={"session_id": session_id})
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

    async def expire_idle(self, now: datetime | None = None) -> List[str]:
        """Close sessions idle for longer than the configured window."""

        if self.idle_seconds <= 0:
            return []
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.idle_seconds)
        expired = [
            session.id for session in self._sessions.values() if session.last_activity_at < cutoff
        ]
        for session_id in expired:
            logger.info(
                "Calibration session %s idle since before %s",
                session_id,
                cutoff.isoformat(),
                extra={"session_id": session_id},
            )
            await self.close(session_id)
        return expired

    def start(self) -> None:
        if self.idle_seconds <= 0 or (self._task and not self._task.done()):
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="calibration-expiry")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval_seconds)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.expire_idle()
            except Exception:
                logger.exception("Calibration session expiry failed")
