from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Request

from aquadash.config import Settings, get_settings
from aquadash.http_utils import calibration_registry, ingestion
from aquadash.schemas import StatusResponse, TransportStatus
from aquadash.services.liveness import LivenessMonitor

router = APIRouter(prefix="/v1")


@router.get("/status", response_model=StatusResponse)
async def status_endpoint(request: Request, settings: Settings = Depends(get_settings)) -> StatusResponse:
    channel = ingestion(request.app)
    session = channel.session
    monitor: LivenessMonitor | None = getattr(request.app.state, "liveness", None)
    uptime = int(time.monotonic() - getattr(request.app.state, "started_at", time.monotonic()))
    return StatusResponse(
        service_name=settings.service_name,
        service_version=settings.service_version,
        uptime_seconds=uptime,
        summary=channel.summary(),
        transport=TransportStatus(
            status=session.status.value,
            connected=session.connected,
            broker=f"{settings.mqtt_scheme}://{settings.mqtt_host}:{settings.mqtt_port}",
            last_error=session.last_error,
            connect_attempts=session.connect_attempts,
            active_filters=session.active_filters,
        ),
        messages_received=channel.messages_received,
        messages_dropped=channel.messages_dropped,
        last_sweep_at=monitor.last_sweep_at if monitor else None,
        calibration_sessions=len(calibration_registry(request.app)),
    )
