"""pH probe calibration by least-squares fit of buffer solutions."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from pydantic import BaseModel

from aquadash.calibration.base import CalibrationPoint, CalibrationSession
from aquadash.errors import CalibrationNotReady, CalibrationValidationError

logger = logging.getLogger(__name__)

PH_BUFFERS: Tuple[float, ...] = (4.01, 6.86, 9.18)
CUSTOM_BUFFER = "custom"
MIN_POINTS = 2
PAYLOAD_DECIMALS = 5


class PhModel(BaseModel):
    slope: float
    intercept: float
    r_squared: float
    low_quality: bool = False


@dataclass(frozen=True)
class LinearFit:
    slope: float
    intercept: float


def parse_reference(selection: Any, custom: Any = None) -> float:
    """Resolve a buffer preset or a custom value into a reference pH."""

    if selection is None or selection == "":
        raise CalibrationValidationError("a buffer solution must be selected")
    raw = custom if str(selection).strip().lower() == CUSTOM_BUFFER else selection
    if isinstance(raw, bool):
        raise CalibrationValidationError("reference pH must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"reference pH {raw!r} is not a number") from exc
    if not math.isfinite(value):
        raise CalibrationValidationError("reference pH must be finite")
    return value


def fit_linear_regression(voltages: Sequence[float], values: Sequence[float]) -> Optional[LinearFit]:
    """Ordinary least squares of ``values`` on ``voltages``.

    Returns None with fewer than two points or when every voltage is the
    same, since the slope is undefined.
    """

    n = len(voltages)
    if n != len(values):
        raise ValueError("voltages and values must have the same length")
    if n < MIN_POINTS:
        return None
    sum_v = sum(voltages)
    sum_p = sum(values)
    sum_vp = sum(v * p for v, p in zip(voltages, values))
    sum_vv = sum(v * v for v in voltages)
    denominator = n * sum_vv - sum_v * sum_v
    if math.isclose(denominator, 0.0, abs_tol=1e-12):
        return None
    slope = (n * sum_vp - sum_v * sum_p) / denominator
    intercept = (sum_p - slope * sum_v) / n
    return LinearFit(slope=slope, intercept=intercept)


def coefficient_of_determination(
    voltages: Sequence[float],
    values: Sequence[float],
    slope: float,
    intercept: float,
) -> float:
    if len(values) < MIN_POINTS:
        return 0.0
    mean = sum(values) / len(values)
    ss_tot = sum((p - mean) ** 2 for p in values)
    ss_res = sum((p - (slope * v + intercept)) ** 2 for v, p in zip(voltages, values))
    if ss_tot == 0:
        return 1.0 if ss_res == 0 else 0.0
    return 1 - ss_res / ss_tot


class PhCalibrationSession(CalibrationSession):
    sensor = "ph"

    @property
    def tolerance(self) -> float:
        return self.settings.calibration_duplicate_tolerance

    def capture_point(self, selection: Any, custom: Any = None) -> CalibrationPoint:
        """Pair a buffer with the live voltage and keep the points sorted by pH."""

        self.ensure_open()
        reference = parse_reference(selection, custom)
        if not self.cursor.voltage > 0:
            raise CalibrationNotReady("no live voltage reading")
        if not self.connected:
            raise CalibrationNotReady("broker not connected")
        for point in self.points:
            if abs(point.reference_value - reference) < self.tolerance:
                raise CalibrationValidationError(f"pH {reference:g} is already a calibration point")
        point = CalibrationPoint(
            reference_value=reference,
            voltage=self.cursor.voltage,
            temperature=self.cursor.temperature,
            captured_at=self._clock(),
        )
        self.points = sorted([*self.points, point], key=lambda item: item.reference_value)
        return point

    def remove_point(self, index: int) -> CalibrationPoint:
        self.ensure_open()
        if index < 0 or index >= len(self.points):
            raise CalibrationValidationError(f"no calibration point at index {index}")
        points = list(self.points)
        removed = points.pop(index)
        self.points = points
        return removed

    def compute_model(self) -> Optional[PhModel]:
        voltages = [point.voltage for point in self.points]
        values = [point.reference_value for point in self.points]
        fit = fit_linear_regression(voltages, values)
        if fit is None:
            return None
        r_squared = coefficient_of_determination(voltages, values, fit.slope, fit.intercept)
        return PhModel(
            slope=fit.slope,
            intercept=fit.intercept,
            r_squared=r_squared,
            low_quality=r_squared < self.settings.calibration_r_squared_warning,
        )

    def predicted_ph(self) -> Optional[float]:
        model = self.compute_model()
        if model is None or not self.cursor.voltage > 0:
            return None
        return model.slope * self.cursor.voltage + model.intercept

    def build_payload(self) -> Dict[str, Any]:
        self.ensure_ready()
        if len(self.points) < MIN_POINTS:
            raise CalibrationNotReady(f"at least {MIN_POINTS} calibration points are required")
        model = self.compute_model()
        if model is None:
            raise CalibrationNotReady("calibration points do not define a line")
        if model.low_quality:
            logger.warning(
                "Submitting pH calibration for %s with R^2 %.4f",
                self.device_id,
                model.r_squared,
                extra={"device_id": self.device_id, "session_id": self.id},
            )
        return {
            "ph": {
                "m": round(model.slope, PAYLOAD_DECIMALS),
                "c": round(model.intercept, PAYLOAD_DECIMALS),
            }
        }

    def describe(self) -> Dict[str, Any]:
        details = super().describe()
        details["predicted_ph"] = self.predicted_ph()
        details["buffers"] = list(PH_BUFFERS)
        return details
