from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from aiomqtt import MqttError

from aquadash.calibration.base import SubmissionState
from aquadash.calibration.ph import (
    PhCalibrationSession,
    coefficient_of_determination,
    fit_linear_regression,
    parse_reference,
)
from aquadash.errors import CalibrationNotReady, CalibrationValidationError, CommandPublishError
from aquadash.services.commands import CommandChannel

from conftest import telemetry

NOW = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def test_regression_matches_hand_computed_values():
    fit = fit_linear_regression([3.0, 2.0, 1.0], [4.01, 6.86, 9.18])
    assert fit.slope == pytest.approx(-2.585)
    assert fit.intercept == pytest.approx(11.853333, abs=1e-6)


def test_perfect_line_has_unit_r_squared():
    voltages = [1.0, 2.0, 3.0]
    values = [7.0 - 2.0 * v for v in voltages]
    fit = fit_linear_regression(voltages, values)
    assert coefficient_of_determination(voltages, values, fit.slope, fit.intercept) == pytest.approx(1.0)


def test_equal_voltages_give_no_model():
    assert fit_linear_regression([2.0, 2.0], [4.01, 6.86]) is None
    assert fit_linear_regression([2.0], [4.01]) is None


@pytest.mark.parametrize(
    "selection,custom,expected",
    [("4.01", None, 4.01), (9.18, None, 9.18), ("custom", "7.5", 7.5)],
)
def test_parse_reference(selection, custom, expected):
    assert parse_reference(selection, custom) == pytest.approx(expected)


@pytest.mark.parametrize("selection,custom", [("custom", "abc"), ("custom", None), ("", None)])
def test_parse_reference_rejects_bad_input(selection, custom):
    with pytest.raises(CalibrationValidationError):
        parse_reference(selection, custom)


@pytest.fixture
async def ph_session(settings, mqtt_session):
    mqtt_session.start()
    session = PhCalibrationSession(
        "pond-01",
        settings,
        mqtt_session,
        CommandChannel(settings, mqtt_session),
        clock=lambda: NOW,
    )
    await session.open()
    yield session
    await session.close()


def _feed(mqtt_session, voltage: float, temperature: float = 26.0) -> None:
    mqtt_session.dispatch(
        "simonair/pond-01/data",
        telemetry(ph={"voltage": voltage, "raw": 1800}, temperature={"value": temperature}),
    )


@pytest.mark.anyio("asyncio")
async def test_duplicate_point_is_rejected(ph_session, mqtt_session):
    _feed(mqtt_session, 2.5)
    ph_session.capture_point("6.86")
    _feed(mqtt_session, 2.4)
    with pytest.raises(CalibrationValidationError):
        ph_session.capture_point("custom", "6.865")
    assert len(ph_session.points) == 1


@pytest.mark.anyio("asyncio")
async def test_points_sorted_and_payload_rounded(ph_session, mqtt_session, fake_client):
    _feed(mqtt_session, 2.0)
    ph_session.capture_point("6.86")
    _feed(mqtt_session, 2.5)
    ph_session.capture_point("4.01")

    assert [p.reference_value for p in ph_session.points] == [4.01, 6.86]
    model = ph_session.compute_model()
    assert model.slope == pytest.approx(-5.7)
    assert model.intercept == pytest.approx(18.26)
    assert model.r_squared == pytest.approx(1.0)
    assert ph_session.predicted_ph() == pytest.approx(4.01)

    sent = await ph_session.submit()
    assert sent == {"ph": {"m": pytest.approx(-5.7), "c": pytest.approx(18.26)}}
    assert fake_client.published_json()[0][0] == "simonair/pond-01/calibrate"
    assert ph_session.submission == SubmissionState.SUBMITTED


@pytest.mark.anyio("asyncio")
async def test_zero_voltage_keeps_last_reading(ph_session, mqtt_session):
    _feed(mqtt_session, 2.2)
    _feed(mqtt_session, 0)
    assert ph_session.cursor.voltage == pytest.approx(2.2)
    assert ph_session.cursor.temperature == pytest.approx(26.0)


@pytest.mark.anyio("asyncio")
async def test_submit_requires_two_points(ph_session, mqtt_session):
    _feed(mqtt_session, 2.0)
    ph_session.capture_point("4.01")
    with pytest.raises(CalibrationNotReady):
        await ph_session.submit()
    assert ph_session.submission == SubmissionState.IDLE


@pytest.mark.anyio("asyncio")
async def test_failed_publish_marks_error(ph_session, mqtt_session, fake_client):
    _feed(mqtt_session, 2.0)
    ph_session.capture_point("4.01")
    _feed(mqtt_session, 1.5)
    ph_session.capture_point("6.86")
    mqtt_session.disconnect()

    with pytest.raises(CalibrationNotReady):
        await ph_session.submit()

    mqtt_session.start()
    fake_client.publish_error = MqttError("rejected")
    with pytest.raises(CommandPublishError):
        await ph_session.submit()
    assert ph_session.submission == SubmissionState.ERROR
    assert "rejected" in ph_session.last_error


@pytest.mark.anyio("asyncio")
async def test_remove_point_refits(ph_session, mqtt_session):
    _feed(mqtt_session, 2.5)
    ph_session.capture_point("4.01")
    _feed(mqtt_session, 2.0)
    ph_session.capture_point("6.86")
    _feed(mqtt_session, 1.5)
    ph_session.capture_point("9.18")
    removed = ph_session.remove_point(2)
    assert removed.reference_value == 9.18
    assert ph_session.compute_model().slope == pytest.approx(-5.7)
    with pytest.raises(CalibrationValidationError):
        ph_session.remove_point(5)


@pytest.mark.anyio("asyncio")
async def test_negative_readings_block_capture_and_submit(ph_session, mqtt_session, fake_client):
    _feed(mqtt_session, 2.0)
    ph_session.capture_point("4.01")
    _feed(mqtt_session, 1.5)
    ph_session.capture_point("6.86")

    _feed(mqtt_session, -0.5, temperature=-3.0)
    assert not ph_session.ready
    with pytest.raises(CalibrationNotReady):
        ph_session.capture_point("9.18")
    with pytest.raises(CalibrationNotReady):
        await ph_session.submit()

    assert fake_client.published == []
    assert ph_session.submission == SubmissionState.IDLE
    assert len(ph_session.points) == 2


@pytest.mark.anyio("asyncio")
async def test_close_during_publish_leaves_state_untouched(ph_session, mqtt_session, fake_client):
    _feed(mqtt_session, 2.0)
    ph_session.capture_point("4.01")
    _feed(mqtt_session, 1.5)
    ph_session.capture_point("6.86")
    fake_client.publish_delay = 0.05

    pending = asyncio.create_task(ph_session.submit())
    await asyncio.sleep(0.01)
    assert ph_session.submission == SubmissionState.SUBMITTING
    await ph_session.close()
    await pending

    assert ph_session.last_payload is None
    assert ph_session.last_error is None
    assert ph_session.submission == SubmissionState.SUBMITTING
    assert ph_session.points == []
