from __future__ import annotations

import json

import pytest

from aquadash.errors import PayloadParseError
from aquadash.models import SensorLabel, SensorStatus
from aquadash.services.parser import decode_payload, normalize_status, parse_payload, parse_readings

FULL_PAYLOAD = {
    "ph": {"raw": 6.91, "voltage": 2.41, "calibrated": 7.02, "calibrated_ok": True, "status": "GOOD"},
    "tds": {"raw": 312.0, "voltage": 0.82, "calibrated": 298.44, "calibrated_ok": False, "status": "BAD"},
    "do": {"raw": 7.1, "voltage": 1210.0, "calibrated": 6.4, "status": "GOOD"},
    "temperature": {"value": 26.37, "status": "GOOD"},
}


def test_full_payload_yields_readings_in_fixed_order():
    readings = parse_readings(FULL_PAYLOAD)
    assert [r.label for r in readings] == [
        SensorLabel.PH,
        SensorLabel.TDS,
        SensorLabel.DO,
        SensorLabel.TEMPERATURE,
    ]
    ph, tds, do, temperature = readings
    assert ph.display_value == "7.02"
    assert ph.unit == ""
    assert ph.calibrated_ok is True
    assert ph.voltage == pytest.approx(2.41)
    assert tds.display_value == "298.4"
    assert tds.unit == "ppm"
    assert tds.status == SensorStatus.BAD
    assert do.display_value == "6.40"
    assert do.unit == "mg/L"
    assert do.calibrated_ok is None
    assert temperature.display_value == "26.4"
    assert temperature.unit == "°C"
    assert temperature.raw_adc is None


def test_parsing_is_deterministic():
    raw = json.dumps(FULL_PAYLOAD).encode("utf-8")
    assert parse_payload(raw) == parse_payload(raw)


def test_falls_back_to_raw_then_placeholder():
    readings = parse_readings(
        {
            "ph": {"raw": 6.5, "calibrated": None, "status": "GOOD"},
            "tds": {"status": "GOOD"},
        }
    )
    assert readings[0].display_value == "6.50"
    assert readings[1].display_value == "-"


def test_booleans_are_not_numbers():
    (reading,) = parse_readings({"ph": {"calibrated": True, "raw": False}})
    assert reading.display_value == "-"


def test_non_object_section_is_placeholder_and_bad():
    (reading,) = parse_readings({"do": "offline"})
    assert reading.display_value == "-"
    assert reading.status == SensorStatus.BAD


def test_null_section_is_absent():
    readings = parse_readings({"ph": None, "temperature": {"value": 24.0, "status": "GOOD"}})
    assert [r.label for r in readings] == [SensorLabel.TEMPERATURE]


def test_unknown_keys_are_ignored():
    assert parse_readings({"salinity": {"raw": 1}}) == []


@pytest.mark.parametrize(
    "value,expected",
    [
        ("GOOD", SensorStatus.GOOD),
        ("BAD", SensorStatus.BAD),
        ("WARNING", SensorStatus.BAD),
        ("-", SensorStatus.BAD),
        ("good", SensorStatus.BAD),
        (None, SensorStatus.BAD),
        (1, SensorStatus.BAD),
    ],
)
def test_status_normalization(value, expected):
    assert normalize_status(value) == expected


@pytest.mark.parametrize("raw", [b"not json", b"\xff\xfe", b"[1, 2]", "42"])
def test_decode_rejects_non_objects(raw):
    with pytest.raises(PayloadParseError):
        decode_payload(raw)


def test_parse_payload_swallows_malformed_input():
    assert parse_payload(b"{broken") == []


def test_parse_failure_is_reported_to_the_caller():
    failures = []
    assert parse_payload(b"[1, 2]", on_error=failures.append) == []
    assert len(failures) == 1
    assert isinstance(failures[0], PayloadParseError)

    assert parse_payload(b"{}", on_error=failures.append) == []
    assert len(failures) == 1
