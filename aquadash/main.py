"""FastAPI application serving live device state and calibration workflows."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from aquadash.calibration.registry import CalibrationSessionRegistry
from aquadash.config import get_settings
from aquadash.observability import configure_observability
from aquadash.routers import calibration as calibration_router
from aquadash.routers import devices as devices_router
from aquadash.routers import root as root_router
from aquadash.routers import status as status_router
from aquadash.services.commands import CommandChannel
from aquadash.services.ingestion import TelemetryIngestionChannel
from aquadash.services.liveness import LivenessMonitor
from aquadash.services.store import DeviceStateStore
from aquadash.services.transport import MqttSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    session = MqttSession(settings)
    store = DeviceStateStore()
    ingestion = TelemetryIngestionChannel(settings, session, store)
    liveness = LivenessMonitor(
        store,
        staleness_seconds=settings.staleness_seconds,
        interval_seconds=settings.liveness_interval_seconds,
    )
    commands = CommandChannel(settings, session)
    registry = CalibrationSessionRegistry(settings, session, commands)

    await ingestion.start()
    session.start()
    liveness.start()
    registry.start()

    app.state.mqtt = session
    app.state.store = store
    app.state.ingestion = ingestion
    app.state.liveness = liveness
    app.state.commands = commands
    app.state.calibration_sessions = registry
    app.state.started_at = time.monotonic()
    logger.info(
        "Dashboard service started; listening on %s via %s",
        settings.telemetry_filter,
        settings.mqtt_host,
    )

    try:
        yield
    finally:
        calibration_sessions: CalibrationSessionRegistry | None = getattr(app.state, "calibration_sessions", None)
        if calibration_sessions is not None:
            await calibration_sessions.stop()
            await calibration_sessions.close_all()
        monitor: LivenessMonitor | None = getattr(app.state, "liveness", None)
        if monitor:
            await monitor.stop()
        channel: TelemetryIngestionChannel | None = getattr(app.state, "ingestion", None)
        if channel:
            await channel.stop()
        mqtt: MqttSession | None = getattr(app.state, "mqtt", None)
        if mqtt:
            await mqtt.stop()
        logger.info("Dashboard service stopped")


settings = get_settings()
app = FastAPI(title="Water Quality Dashboard", lifespan=lifespan)
configure_observability(
    app,
    service_name=settings.service_name,
    service_version=settings.service_version,
    log_level=settings.log_level,
    otel_enabled=settings.otel_enabled,
    otlp_endpoint=settings.otel_exporter_otlp_endpoint,
    otlp_headers=settings.otel_exporter_otlp_headers,
    otel_sample_ratio=settings.otel_sample_ratio,
)

app.include_router(root_router.router)
app.include_router(status_router.router)
app.include_router(devices_router.router)
app.include_router(calibration_router.router)


def main() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run("aquadash.main:app", host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":  # pragma: no cover
    main()
