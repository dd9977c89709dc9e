"""Fold parsed readings into per-device state."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Sequence

from aquadash.models import (
    CalibrationHealth,
    ConnectionStatus,
    DashboardSummary,
    DeviceState,
    DeviceStatus,
    SensorReading,
    SensorStatus,
)

DEFAULT_NAME_PREFIX = "Device "


def derive_status(readings: Sequence[SensorReading]) -> DeviceStatus:
    """BAD dominates GOOD; a batch without readings has no data."""

    statuses = {reading.status for reading in readings}
    if SensorStatus.BAD in statuses:
        return DeviceStatus.PROBLEM
    if SensorStatus.GOOD in statuses:
        return DeviceStatus.NORMAL
    return DeviceStatus.NO_DATA


def reduce_device_state(
    previous: Mapping[str, DeviceState],
    device_id: str,
    readings: Sequence[SensorReading],
    now: datetime,
) -> Dict[str, DeviceState]:
    """Return a new state map with ``device_id`` replaced by the latest batch."""

    existing = previous.get(device_id)
    display_name = existing.display_name if existing and existing.display_name else f"{DEFAULT_NAME_PREFIX}{device_id}"
    updated = dict(previous)
    updated[device_id] = DeviceState(
        id=device_id,
        display_name=display_name,
        derived_status=derive_status(readings),
        online=True,
        last_online_at=now,
        last_data_at=now,
        sensors=tuple(readings),
    )
    return updated


def calibration_health(device: DeviceState) -> Optional[CalibrationHealth]:
    """Summarize calibration flags for readings that report one."""

    flags = [reading.calibrated_ok for reading in device.sensors if reading.calibrated_ok is not None]
    if not flags:
        return None
    calibrated = sum(1 for flag in flags if flag)
    return CalibrationHealth(
        calibrated=calibrated,
        total=len(flags),
        percentage=round(calibrated / len(flags) * 100),
    )


def dashboard_summary(
    devices: Iterable[DeviceState],
    connection_status: ConnectionStatus,
    last_update_at: Optional[datetime],
) -> DashboardSummary:
    states = list(devices)
    return DashboardSummary(
        connection_status=connection_status,
        online_devices=sum(1 for device in states if device.online),
        total_devices=len(states),
        last_update_at=last_update_at,
    )
