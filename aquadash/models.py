"""Domain models for parsed telemetry and per-device state."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

NO_VALUE = "-"


class SensorLabel(str, Enum):
    PH = "pH"
    TDS = "TDS"
    DO = "DO"
    TEMPERATURE = "Temperature"


class SensorStatus(str, Enum):
    GOOD = "GOOD"
    BAD = "BAD"


class DeviceStatus(str, Enum):
    NORMAL = "normal"
    PROBLEM = "problem"
    NO_DATA = "no_data"


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class SensorReading(BaseModel):
    """One measurement from a telemetry batch."""

    model_config = ConfigDict(frozen=True)

    label: SensorLabel
    display_value: str = NO_VALUE
    unit: str = ""
    status: SensorStatus = SensorStatus.BAD
    raw_adc: Optional[float] = None
    voltage: Optional[float] = None
    calibrated_value: Optional[float] = None
    calibrated_ok: Optional[bool] = None


class DeviceState(BaseModel):
    """Latest known state of one physical device.

    Records are replaced as a whole on every update; ``sensors`` only holds
    the readings from the most recent payload.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    derived_status: DeviceStatus = DeviceStatus.NO_DATA
    online: bool = False
    last_online_at: Optional[datetime] = None
    last_data_at: Optional[datetime] = None
    sensors: Tuple[SensorReading, ...] = Field(default_factory=tuple)


class CalibrationHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    calibrated: int
    total: int
    percentage: int


class DashboardSummary(BaseModel):
    connection_status: ConnectionStatus
    online_devices: int
    total_devices: int
    last_update_at: Optional[datetime] = None
