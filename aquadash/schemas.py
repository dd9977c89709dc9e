from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from aquadash.models import CalibrationHealth, DashboardSummary, DeviceState


class DeviceDetail(BaseModel):
    device: DeviceState
    calibration_health: Optional[CalibrationHealth] = None


class DeviceListResponse(BaseModel):
    summary: DashboardSummary
    devices: List[DeviceDetail]


class TransportStatus(BaseModel):
    status: str
    connected: bool
    broker: str
    last_error: Optional[str] = None
    connect_attempts: int = 0
    active_filters: List[str] = Field(default_factory=list)


class StatusResponse(BaseModel):
    service_name: str
    service_version: str
    uptime_seconds: int
    summary: DashboardSummary
    transport: TransportStatus
    messages_received: int
    messages_dropped: int
    last_sweep_at: Optional[datetime] = None
    calibration_sessions: int


class CommandAccepted(BaseModel):
    device_id: str
    topic: str
    command_id: str
    payload: Dict[str, Any]


class OpenCalibrationRequest(BaseModel):
    device_id: str = Field(min_length=1)
    sensor: str = Field(pattern="^(ph|tds|do)$")


class CapturePointRequest(BaseModel):
    """Reference for the next point.

    pH takes a buffer (``4.01``, ``6.86``, ``9.18`` or ``custom`` with
    ``custom_value``); TDS takes the standard in ppm the same way. DO ignores
    the body and captures the live reading.
    """

    reference: Optional[Union[float, str]] = None
    custom_value: Optional[Union[float, str]] = None


class ModeRequest(BaseModel):
    mode: str
