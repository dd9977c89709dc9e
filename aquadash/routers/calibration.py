"""Operator-driven calibration sessions.

Each session holds its own live-reading subscription and captured points;
submitting publishes the device-specific payload on ``/calibrate``.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from aquadash.auth import require_operator_auth
from aquadash.calibration.dissolved_oxygen import DoCalibrationSession
from aquadash.calibration.ph import PhCalibrationSession
from aquadash.calibration.tds import TdsCalibrationSession
from aquadash.errors import AquadashError, CalibrationValidationError
from aquadash.http_utils import calibration_registry, calibration_session, http_error
from aquadash.schemas import CapturePointRequest, ModeRequest, OpenCalibrationRequest

router = APIRouter(prefix="/v1/calibration", dependencies=[Depends(require_operator_auth)])


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def open_session(payload: OpenCalibrationRequest, request: Request) -> Dict[str, Any]:
    try:
        session = await calibration_registry(request.app).open(payload.device_id, payload.sensor)
    except AquadashError as exc:
        raise http_error(exc) from exc
    return session.describe()


@router.get("/sessions")
async def list_sessions(request: Request) -> Dict[str, Any]:
    sessions = calibration_registry(request.app).sessions()
    return {"sessions": [session.describe() for session in sessions]}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, request: Request) -> Dict[str, Any]:
    return calibration_session(request.app, session_id).describe()


@router.post("/sessions/{session_id}/points")
async def capture_point(
    session_id: str,
    request: Request,
    payload: CapturePointRequest | None = None,
) -> Dict[str, Any]:
    session = calibration_session(request.app, session_id)
    body = payload or CapturePointRequest()
    try:
        if isinstance(session, PhCalibrationSession):
            session.capture_point(body.reference, body.custom_value)
        elif isinstance(session, TdsCalibrationSession):
            session.select_standard(body.reference, body.custom_value)
        elif isinstance(session, DoCalibrationSession):
            session.capture_point()
        else:
            raise CalibrationValidationError(f"{session.sensor} sessions do not capture points")
    except AquadashError as exc:
        raise http_error(exc) from exc
    return session.describe()


@router.delete("/sessions/{session_id}/points/{index}")
async def remove_point(session_id: str, index: int, request: Request) -> Dict[str, Any]:
    session = calibration_session(request.app, session_id)
    if not isinstance(session, PhCalibrationSession):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only pH points can be removed")
    try:
        session.remove_point(index)
    except AquadashError as exc:
        raise http_error(exc) from exc
    return session.describe()


@router.post("/sessions/{session_id}/reset")
async def reset_session(session_id: str, request: Request) -> Dict[str, Any]:
    session = calibration_session(request.app, session_id)
    try:
        session.reset()
    except AquadashError as exc:
        raise http_error(exc) from exc
    return session.describe()


@router.post("/sessions/{session_id}/mode")
async def set_mode(session_id: str, payload: ModeRequest, request: Request) -> Dict[str, Any]:
    session = calibration_session(request.app, session_id)
    if not isinstance(session, DoCalibrationSession):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only DO sessions have modes")
    try:
        session.set_mode(payload.mode)
    except AquadashError as exc:
        raise http_error(exc) from exc
    return session.describe()


@router.post("/sessions/{session_id}/submit")
async def submit_session(session_id: str, request: Request) -> Dict[str, Any]:
    session = calibration_session(request.app, session_id)
    try:
        sent = await session.submit()
    except AquadashError as exc:
        raise http_error(exc) from exc
    details = session.describe()
    details["sent"] = sent
    return details


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(session_id: str, request: Request) -> None:
    closed = await calibration_registry(request.app).close(session_id)
    if not closed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Calibration session not found")
