"""Subscribe to device telemetry and fold it into the device state store."""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from aquadash.config import Settings
from aquadash.errors import PayloadParseError
from aquadash.models import ConnectionStatus, DashboardSummary
from aquadash.services.liveness import Clock, utcnow
from aquadash.services.parser import parse_payload
from aquadash.services.reducer import dashboard_summary, reduce_device_state
from aquadash.services.store import DeviceStateStore
from aquadash.services.transport import MqttSession, Subscription

logger = logging.getLogger(__name__)


def telemetry_topic_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}/([^/]+)/data$")


def extract_device_id(topic: str, prefix: str) -> Optional[str]:
    """Return the device id segment of a telemetry topic, or None."""

    match = telemetry_topic_pattern(prefix).match(topic)
    if not match:
        return None
    return match.group(1)


class TelemetryIngestionChannel:
    """Feed ``{prefix}/+/data`` messages through the parser and reducer."""

    def __init__(
        self,
        settings: Settings,
        session: MqttSession,
        store: DeviceStateStore,
        *,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.session = session
        self.store = store
        self._clock = clock
        self._pattern = telemetry_topic_pattern(settings.topic_prefix)
        self._subscription: Subscription | None = None
        self._remove_status_listener: Callable[[], None] | None = None
        self.last_update_at: datetime | None = None
        self.messages_received = 0
        self.messages_dropped = 0

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.session.status

    async def start(self) -> None:
        if self._subscription is not None:
            return
        self._remove_status_listener = self.session.add_status_listener(self._on_status)
        self._subscription = await self.session.subscribe(
            self.settings.telemetry_filter, self.handle_message, qos=1
        )

    async def stop(self) -> None:
        if self._remove_status_listener:
            self._remove_status_listener()
            self._remove_status_listener = None
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    def _on_status(self, status: ConnectionStatus) -> None:
        logger.debug("Telemetry connection status %s", status.value)

    def handle_message(self, topic: str, payload: bytes | str | Mapping[str, Any]) -> bool:
        """Apply one telemetry message; returns True when the store was updated."""

        match = self._pattern.match(topic)
        if not match:
            logger.debug("Ignoring message on unexpected topic %s", topic)
            return False
        device_id = match.group(1)
        self.messages_received += 1
        rejected: List[PayloadParseError] = []
        readings = parse_payload(payload, on_error=rejected.append)
        if rejected:
            self.messages_dropped += 1
            logger.warning(
                "Dropping telemetry from %s: %s",
                device_id,
                rejected[0],
                extra={"device_id": device_id, "topic": topic},
            )
            return False

        now = self._clock()
        self.store.apply(lambda states: reduce_device_state(states, device_id, readings, now))
        self.last_update_at = now
        return True

    def summary(self) -> DashboardSummary:
        return dashboard_summary(
            self.store.snapshot().values(),
            self.connection_status,
            self.last_update_at,
        )
