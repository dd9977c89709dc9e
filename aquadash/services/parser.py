"""Turn raw device telemetry into normalized sensor readings."""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from aquadash.errors import PayloadParseError
from aquadash.models import NO_VALUE, SensorLabel, SensorReading, SensorStatus

logger = logging.getLogger(__name__)

# Every status word seen from the firmware variants. Only GOOD is healthy;
# WARNING and the "-" placeholder count as problems.
STATUS_ALIASES: Dict[str, SensorStatus] = {
    "GOOD": SensorStatus.GOOD,
    "BAD": SensorStatus.BAD,
    "WARNING": SensorStatus.BAD,
    "-": SensorStatus.BAD,
}


@dataclass(frozen=True)
class SensorSpec:
    key: str
    label: SensorLabel
    unit: str
    precision: int
    value_fields: Tuple[str, ...]
    analog: bool = True


# Payload keys in the order readings are emitted.
SENSOR_SPECS: Tuple[SensorSpec, ...] = (
    SensorSpec("ph", SensorLabel.PH, "", 2, ("calibrated", "raw")),
    SensorSpec("tds", SensorLabel.TDS, "ppm", 1, ("calibrated", "raw")),
    SensorSpec("do", SensorLabel.DO, "mg/L", 2, ("calibrated", "raw")),
    SensorSpec("temperature", SensorLabel.TEMPERATURE, "°C", 1, ("value",), analog=False),
)


def normalize_status(value: Any) -> SensorStatus:
    """Map a device-reported status onto GOOD/BAD; anything unrecognized is BAD."""

    if not isinstance(value, str):
        return SensorStatus.BAD
    return STATUS_ALIASES.get(value, SensorStatus.BAD)


def as_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float when it is a finite JSON number."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def format_value(value: Optional[float], precision: int) -> str:
    if value is None:
        return NO_VALUE
    return f"{value:.{precision}f}"


def decode_payload(raw: bytes | bytearray | str | Mapping[str, Any]) -> Dict[str, Any]:
    """Decode a telemetry message body into a JSON object."""

    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PayloadParseError("payload is not UTF-8") from exc
    if not isinstance(raw, str):
        raise PayloadParseError(f"unsupported payload type {type(raw).__name__}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PayloadParseError(f"payload is not JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise PayloadParseError("payload is not a JSON object")
    return data


def _build_reading(spec: SensorSpec, section: Any) -> SensorReading:
    if not isinstance(section, Mapping):
        section = {}
    display = None
    for field in spec.value_fields:
        display = as_number(section.get(field))
        if display is not None:
            break
    reading: Dict[str, Any] = {
        "label": spec.label,
        "display_value": format_value(display, spec.precision),
        "unit": spec.unit,
        "status": normalize_status(section.get("status")),
    }
    if spec.analog:
        calibrated_ok = section.get("calibrated_ok")
        reading.update(
            raw_adc=as_number(section.get("raw")),
            voltage=as_number(section.get("voltage")),
            calibrated_value=as_number(section.get("calibrated")),
            calibrated_ok=calibrated_ok if isinstance(calibrated_ok, bool) else None,
        )
    return SensorReading(**reading)


def parse_readings(payload: Mapping[str, Any]) -> List[SensorReading]:
    """Build one reading per recognized sensor key present in ``payload``."""

    readings: List[SensorReading] = []
    for spec in SENSOR_SPECS:
        section = payload.get(spec.key)
        if section is None:
            continue
        readings.append(_build_reading(spec, section))
    return readings


def parse_payload(
    raw: bytes | bytearray | str | Mapping[str, Any],
    on_error: Optional[Callable[[PayloadParseError], None]] = None,
) -> List[SensorReading]:
    """Parse a raw message; malformed input yields no readings instead of raising.

    ``on_error`` receives the decode failure so callers can tell a rejected
    payload apart from a valid one that carried no sensor sections. Without
    it the failure is logged here.
    """

    try:
        payload = decode_payload(raw)
    except PayloadParseError as exc:
        if on_error is not None:
            on_error(exc)
        else:
            logger.warning("Dropping malformed telemetry payload: %s", exc)
        return []
    return parse_readings(payload)
