"""Dissolved oxygen probe calibration in saturated air or water."""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from aquadash.calibration.base import CalibrationPoint, CalibrationSession
from aquadash.errors import CalibrationNotReady, CalibrationStateError, CalibrationValidationError

# Oxygen saturation in ug/L at 0..40 degC, one entry per whole degree.
DO_TABLE: Tuple[int, ...] = (
    14460, 14220, 13820, 13440, 13090, 12740, 12420, 12110, 11810, 11530,
    11260, 11010, 10770, 10530, 10300, 10080, 9860, 9660, 9460, 9270,
    9080, 8900, 8730, 8570, 8410, 8250, 8110, 7960, 7820, 7690,
    7560, 7430, 7300, 7180, 7070, 6950, 6840, 6730, 6630, 6530,
    6410,
)
MAX_DO_MG_L = 20.0
UNCALIBRATED_FACTOR = 6.5
PAYLOAD_DECIMALS = 2


class DoMode(str, Enum):
    SINGLE = "single"
    TWO_POINT = "two_point"


class DoStep(str, Enum):
    AWAITING_POINT_1 = "awaiting_point_1"
    AWAITING_POINT_2 = "awaiting_point_2"
    COMPLETE = "complete"


class DoModel(BaseModel):
    mode: DoMode
    v_sat: float
    saturation: int
    calibrated: float
    uncalibrated: float
    theoretical_saturation: float


def saturation_for(temperature_c: float) -> int:
    index = max(0, min(len(DO_TABLE) - 1, math.floor(temperature_c)))
    return DO_TABLE[index]


def theoretical_saturation_mg_l(temperature_c: float) -> float:
    """Sea-level saturation curve, shown next to the table value."""

    t = temperature_c
    return 14.652 - 0.41022 * t + 0.007991 * t**2 - 0.000077774 * t**3


def uncalibrated_do(voltage_mv: float) -> float:
    return voltage_mv * UNCALIBRATED_FACTOR / 1000.0


def interpolate_v_sat(point1: CalibrationPoint, point2: CalibrationPoint, temperature_c: float) -> float:
    t1 = point1.temperature or 0.0
    t2 = point2.temperature or 0.0
    if t1 == t2:
        return point1.voltage
    return point1.voltage + (temperature_c - t1) * (point2.voltage - point1.voltage) / (t2 - t1)


def calibrated_do(voltage_mv: float, temperature_c: float, v_sat: float) -> float:
    if v_sat <= 0:
        return 0.0
    value = voltage_mv * saturation_for(temperature_c) / (v_sat * 1000.0)
    return max(0.0, min(MAX_DO_MG_L, value))


def parse_mode(value: Any) -> DoMode:
    try:
        return DoMode(value)
    except ValueError as exc:
        raise CalibrationValidationError(f"unknown dissolved oxygen mode {value!r}") from exc


class DoCalibrationSession(CalibrationSession):
    sensor = "do"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.mode = DoMode.SINGLE
        self.step = DoStep.AWAITING_POINT_1

    @property
    def point1(self) -> Optional[CalibrationPoint]:
        return self.points[0] if self.points else None

    @property
    def point2(self) -> Optional[CalibrationPoint]:
        return self.points[1] if len(self.points) > 1 else None

    def set_mode(self, mode: DoMode | str) -> DoMode:
        self.ensure_open()
        self.mode = parse_mode(mode)
        self.reset()
        return self.mode

    def reset(self) -> None:
        super().reset()
        self.step = DoStep.AWAITING_POINT_1

    def capture_point(self) -> CalibrationPoint:
        """Record the live voltage and temperature as the next calibration point."""

        self.ensure_open()
        if self.step == DoStep.COMPLETE:
            raise CalibrationStateError("all calibration points are captured; reset to capture again")
        self.ensure_ready()
        temperature = self.cursor.temperature
        point = CalibrationPoint(
            reference_value=saturation_for(temperature) / 1000.0,
            voltage=self.cursor.voltage,
            temperature=temperature,
            captured_at=self._clock(),
        )
        self.points = [*self.points, point]
        if self.mode == DoMode.SINGLE or self.step == DoStep.AWAITING_POINT_2:
            self.step = DoStep.COMPLETE
        else:
            self.step = DoStep.AWAITING_POINT_2
        return point

    def v_sat(self) -> float:
        if self.mode == DoMode.TWO_POINT and self.point1 and self.point2:
            return interpolate_v_sat(self.point1, self.point2, self.cursor.temperature)
        if self.mode == DoMode.SINGLE and self.point1:
            return self.point1.voltage
        return self.cursor.voltage

    def compute_model(self) -> DoModel:
        temperature = self.cursor.temperature
        v_sat = self.v_sat()
        return DoModel(
            mode=self.mode,
            v_sat=v_sat,
            saturation=saturation_for(temperature),
            calibrated=calibrated_do(self.cursor.voltage, temperature, v_sat),
            uncalibrated=uncalibrated_do(self.cursor.voltage),
            theoretical_saturation=theoretical_saturation_mg_l(temperature),
        )

    def build_payload(self) -> Dict[str, Any]:
        if self.mode == DoMode.SINGLE:
            self.ensure_ready()
            voltage = self.point1.voltage if self.point1 else self.cursor.voltage
            temperature = self.point1.temperature if self.point1 else self.cursor.temperature
            return {
                "do": {
                    "cal1_v": round(voltage, PAYLOAD_DECIMALS),
                    "cal1_t": round(temperature, PAYLOAD_DECIMALS),
                    "two_point_mode": False,
                    "calibrated": True,
                }
            }
        if self.step != DoStep.COMPLETE or not (self.point1 and self.point2):
            raise CalibrationNotReady("two-point calibration needs both points captured")
        self.ensure_ready()
        return {
            "do": {
                "cal1_v": round(self.point1.voltage, PAYLOAD_DECIMALS),
                "cal1_t": round(self.point1.temperature, PAYLOAD_DECIMALS),
                "cal2_v": round(self.point2.voltage, PAYLOAD_DECIMALS),
                "cal2_t": round(self.point2.temperature, PAYLOAD_DECIMALS),
                "two_point_mode": True,
                "calibrated": True,
            }
        }

    def describe(self) -> Dict[str, Any]:
        details = super().describe()
        details["mode"] = self.mode.value
        details["step"] = self.step.value
        return details
