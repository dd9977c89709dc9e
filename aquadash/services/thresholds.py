"""Operator threshold validation and mapping onto device field names."""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from aquadash.errors import ThresholdValidationError

SENSOR_KEYS: Tuple[str, ...] = ("ph", "tds", "do", "temp")

# Operator-facing name -> field name understood by the device firmware.
BACKEND_FIELDS: Dict[str, str] = {
    "ph_min": "ph_good",
    "ph_max": "ph_bad",
    "tds_min": "tds_good",
    "tds_max": "tds_bad",
    "do_min": "do_good",
    "do_max": "do_bad",
    "temp_min": "temp_low",
    "temp_max": "temp_high",
}


class ThresholdSet(BaseModel):
    model_config = ConfigDict(extra="forbid", allow_inf_nan=False)

    ph_min: Optional[float] = None
    ph_max: Optional[float] = None
    tds_min: Optional[float] = None
    tds_max: Optional[float] = None
    do_min: Optional[float] = None
    do_max: Optional[float] = None
    temp_min: Optional[float] = None
    temp_max: Optional[float] = None

    def pairs(self) -> List[Tuple[str, Optional[float], Optional[float]]]:
        return [(key, getattr(self, f"{key}_min"), getattr(self, f"{key}_max")) for key in SENSOR_KEYS]

    def validate_pairs(self) -> Dict[str, str]:
        """Return per-sensor error messages; empty when the set is acceptable."""

        errors: Dict[str, str] = {}
        filled = 0
        for key, low, high in self.pairs():
            if low is None and high is None:
                continue
            if low is None or high is None:
                errors[key] = "both min and max are required"
                continue
            if low >= high:
                errors[key] = "min must be less than max"
                continue
            filled += 1
        if not errors and filled == 0:
            errors["thresholds"] = "at least one sensor threshold is required"
        return errors

    def ensure_valid(self) -> None:
        errors = self.validate_pairs()
        if errors:
            detail = "; ".join(f"{key}: {message}" for key, message in errors.items())
            raise ThresholdValidationError(detail)

    def to_backend(self) -> Dict[str, float]:
        """Validate, then rename filled pairs to the firmware's field names."""

        self.ensure_valid()
        payload: Dict[str, float] = {}
        for name, backend_name in BACKEND_FIELDS.items():
            value = getattr(self, name)
            if value is not None:
                payload[backend_name] = value
        return payload


RECOMMENDED_THRESHOLDS = ThresholdSet(
    ph_min=6.5,
    ph_max=8.5,
    tds_min=50,
    tds_max=500,
    do_min=5,
    do_max=15,
    temp_min=20,
    temp_max=30,
)


def recommended() -> ThresholdSet:
    return RECOMMENDED_THRESHOLDS.model_copy()
