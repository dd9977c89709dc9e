"""Publish calibration and threshold commands to devices."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Mapping

from aiomqtt import MqttError

from aquadash.config import Settings
from aquadash.errors import CommandPublishError, CommandTimeout, TransportNotConnected
from aquadash.observability import command_span, correlation_id
from aquadash.services.transport import MqttSession

logger = logging.getLogger(__name__)

CALIBRATE_SUFFIX = "calibrate"
OFFSET_SUFFIX = "offset"


class CommandChannel:
    """Outbound QoS 1 publishes on ``{prefix}/{device}/{suffix}``.

    Delivery is at-least-once. Failures are raised to the caller and never
    retried here.
    """

    def __init__(self, settings: Settings, session: MqttSession):
        self.settings = settings
        self.session = session
        self.timeout_seconds = settings.command_timeout_seconds

    async def publish(self, device_id: str, suffix: str, payload: Mapping[str, Any]) -> str:
        topic = self.settings.device_topic(device_id, suffix)
        body = json.dumps(payload, separators=(",", ":"))
        command_id = correlation_id()
        log_extra = {"device_id": device_id, "topic": topic, "command_id": command_id}
        try:
            with command_span(f"publish {suffix}", device_id=device_id, topic=topic):
                await asyncio.wait_for(self.session.publish(topic, body, qos=1), timeout=self.timeout_seconds)
        except TransportNotConnected:
            logger.warning("Command to %s not sent: broker disconnected", topic, extra=log_extra)
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("Command to %s timed out after %.0fs", topic, self.timeout_seconds, extra=log_extra)
            raise CommandTimeout(f"no acknowledgment for {topic} within {self.timeout_seconds:.0f}s") from exc
        except MqttError as exc:
            logger.warning("Command to %s failed: %s", topic, exc, extra=log_extra)
            raise CommandPublishError(f"publish to {topic} failed: {exc}") from exc
        logger.info("Command published to %s", topic, extra=log_extra)
        return command_id

    async def send_calibration(self, device_id: str, payload: Dict[str, Any]) -> str:
        return await self.publish(device_id, CALIBRATE_SUFFIX, payload)

    async def send_thresholds(self, device_id: str, threshold: Dict[str, float]) -> str:
        return await self.publish(device_id, OFFSET_SUFFIX, {"threshold": threshold})
