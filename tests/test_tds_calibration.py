from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aquadash.calibration.tds import (
    TdsCalibrationSession,
    calibrated_tds,
    compensation_coefficient,
    compute_tds_model,
    k_constant,
    parse_standard,
    raw_tds,
)
from aquadash.errors import CalibrationNotReady, CalibrationValidationError
from aquadash.services.commands import CommandChannel

from conftest import telemetry

NOW = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def test_formula_at_reference_temperature():
    assert raw_tds(1.5, 25.0) == pytest.approx(580.34625)


def test_temperature_compensation():
    assert compensation_coefficient(30.0) == pytest.approx(1.1)
    assert raw_tds(1.1, 30.0) == pytest.approx(raw_tds(1.0, 25.0))


def test_k_constant_and_clamp():
    model = compute_tds_model(1.5, 25.0, standard=342)
    assert model.k_constant == pytest.approx(342 / 580.34625)
    assert model.calibrated_tds == pytest.approx(342)
    assert calibrated_tds(2000.0, 1.0) == 1000.0


@pytest.mark.parametrize("standard,raw", [(0, 500.0), (None, 500.0), (342, 0.0)])
def test_k_defaults_to_one(standard, raw):
    assert k_constant(standard, raw) == 1.0


def test_negative_compensation_yields_zero():
    assert raw_tds(1.5, -30.0) == 0.0


@pytest.mark.parametrize("selection,custom", [("custom", "-5"), ("custom", "x"), (None, None)])
def test_invalid_standards(selection, custom):
    with pytest.raises(CalibrationValidationError):
        parse_standard(selection, custom)


@pytest.mark.anyio("asyncio")
async def test_session_submits_rounded_payload(settings, mqtt_session, fake_client):
    mqtt_session.start()
    session = TdsCalibrationSession(
        "pond-02", settings, mqtt_session, CommandChannel(settings, mqtt_session), clock=lambda: NOW
    )
    await session.open()
    mqtt_session.dispatch(
        "simonair/pond-02/data",
        telemetry(tds={"voltage": 1.234567, "raw": 400}, temperature={"value": 24.456}),
    )

    with pytest.raises(CalibrationNotReady):
        await session.submit()

    session.select_standard("342")
    assert session.compute_model().raw_tds > 0
    sent = await session.submit()

    assert sent == {"tds": {"v": 1.2346, "std": 342.0, "t": 24.46}}
    assert fake_client.published_json() == [("simonair/pond-02/calibrate", sent)]
    await session.close()
    assert fake_client.unsubscribed == ["simonair/pond-02/data"]
