from __future__ import annotations

from fastapi import HTTPException, status
from fastapi.applications import FastAPI

from aquadash.calibration.base import CalibrationSession
from aquadash.calibration.registry import CalibrationSessionRegistry
from aquadash.errors import (
    AquadashError,
    CalibrationNotReady,
    CalibrationStateError,
    CalibrationValidationError,
    CommandTimeout,
    ThresholdValidationError,
    TransportNotConnected,
)
from aquadash.services.commands import CommandChannel
from aquadash.services.ingestion import TelemetryIngestionChannel
from aquadash.services.store import DeviceStateStore


def _component(app: FastAPI, name: str):
    component = getattr(app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name.replace('_', ' ')} not initialized",
        )
    return component


def device_store(app: FastAPI) -> DeviceStateStore:
    return _component(app, "store")


def ingestion(app: FastAPI) -> TelemetryIngestionChannel:
    return _component(app, "ingestion")


def command_channel(app: FastAPI) -> CommandChannel:
    return _component(app, "commands")


def calibration_registry(app: FastAPI) -> CalibrationSessionRegistry:
    return _component(app, "calibration_sessions")


def calibration_session(app: FastAPI, session_id: str) -> CalibrationSession:
    session = calibration_registry(app).get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Calibration session not found")
    return session


def http_error(exc: AquadashError) -> HTTPException:
    """Translate a domain error into the response the API returns for it."""

    if isinstance(exc, TransportNotConnected):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, CommandTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(exc, (CalibrationNotReady, CalibrationStateError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (CalibrationValidationError, ThresholdValidationError)):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=str(exc))
