"""TDS probe calibration against a conductivity standard."""
from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from aquadash.calibration.base import CalibrationSession
from aquadash.errors import CalibrationNotReady, CalibrationValidationError

TDS_STANDARDS: Tuple[float, ...] = (0, 84, 342, 500, 1000, 1413)
CUSTOM_STANDARD = "custom"
REFERENCE_TEMPERATURE_C = 25.0
TEMPERATURE_COEFFICIENT = 0.02
MAX_TDS_PPM = 1000.0


class TdsModel(BaseModel):
    compensation_coefficient: float
    compensated_voltage: float
    raw_tds: float
    k_constant: float
    calibrated_tds: float


def compensation_coefficient(temperature_c: float) -> float:
    return 1.0 + TEMPERATURE_COEFFICIENT * (temperature_c - REFERENCE_TEMPERATURE_C)


def compensated_voltage(voltage: float, temperature_c: float) -> float:
    coefficient = compensation_coefficient(temperature_c)
    if coefficient <= 0:
        return 0.0
    return voltage / coefficient


def raw_tds(voltage: float, temperature_c: float) -> float:
    """Cubic probe curve on the temperature compensated voltage, floored at 0 ppm."""

    vc = compensated_voltage(voltage, temperature_c)
    value = (133.42 * vc**3 - 255.86 * vc**2 + 857.39 * vc) * 0.5
    return max(0.0, value)


def k_constant(standard: Optional[float], raw: float) -> float:
    if not standard or raw <= 0:
        return 1.0
    return standard / raw


def calibrated_tds(raw: float, k: float) -> float:
    return max(0.0, min(MAX_TDS_PPM, raw * k))


def compute_tds_model(voltage: float, temperature_c: float, standard: Optional[float] = None) -> TdsModel:
    raw = raw_tds(voltage, temperature_c)
    k = k_constant(standard, raw)
    return TdsModel(
        compensation_coefficient=compensation_coefficient(temperature_c),
        compensated_voltage=compensated_voltage(voltage, temperature_c),
        raw_tds=raw,
        k_constant=k,
        calibrated_tds=calibrated_tds(raw, k),
    )


def parse_standard(selection: Any, custom: Any = None) -> float:
    if selection is None or selection == "":
        raise CalibrationValidationError("a TDS standard must be selected")
    raw = custom if str(selection).strip().lower() == CUSTOM_STANDARD else selection
    if isinstance(raw, bool):
        raise CalibrationValidationError("TDS standard must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"TDS standard {raw!r} is not a number") from exc
    if not math.isfinite(value) or value < 0:
        raise CalibrationValidationError("TDS standard must be a non-negative number")
    return value


class TdsCalibrationSession(CalibrationSession):
    """Single-point TDS calibration; the device derives ``k`` from ``v``/``std``/``t``."""

    sensor = "tds"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.standard: Optional[float] = None

    def select_standard(self, selection: Any, custom: Any = None) -> float:
        self.ensure_open()
        self.standard = parse_standard(selection, custom)
        return self.standard

    def reset(self) -> None:
        super().reset()
        self.standard = None

    def readiness_problems(self):
        problems = super().readiness_problems()
        if self.standard is None:
            problems.insert(0, "no TDS standard selected")
        return problems

    def compute_model(self) -> Optional[TdsModel]:
        if not self.cursor.voltage > 0 or not self.cursor.temperature > 0:
            return None
        return compute_tds_model(self.cursor.voltage, self.cursor.temperature, self.standard)

    def uncalibrated_estimate(self) -> float:
        if not self.cursor.voltage or not self.cursor.temperature:
            return 0.0
        return raw_tds(self.cursor.voltage, self.cursor.temperature)

    def build_payload(self) -> Dict[str, Any]:
        self.ensure_ready()
        if self.standard is None:
            raise CalibrationNotReady("no TDS standard selected")
        return {
            "tds": {
                "v": round(self.cursor.voltage, 4),
                "std": round(self.standard, 2),
                "t": round(self.cursor.temperature, 2),
            }
        }

    def describe(self) -> Dict[str, Any]:
        details = super().describe()
        details["standard"] = self.standard
        details["standards"] = list(TDS_STANDARDS)
        details["uncalibrated_estimate"] = self.uncalibrated_estimate()
        return details
