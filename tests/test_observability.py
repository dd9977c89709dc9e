from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError

from aquadash.config import Settings
from aquadash.observability import JsonLogFormatter, TraceContextFilter, _parse_header_pairs


def _format(**extra) -> dict:
    record = logging.LogRecord("aquadash.test", logging.WARNING, __file__, 1, "dropped %s", ("x",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    TraceContextFilter("aquadash").filter(record)
    return json.loads(JsonLogFormatter().format(record))


def test_device_context_is_top_level():
    body = _format(device_id="pond-01", topic="simonair/pond-01/data", attempt=3)
    assert body["message"] == "dropped x"
    assert body["service"] == "aquadash"
    assert body["device_id"] == "pond-01"
    assert body["topic"] == "simonair/pond-01/data"
    assert body["extra"] == {"attempt": 3}


def test_header_pairs():
    assert _parse_header_pairs("a=1, b = two,broken") == {"a": "1", "b": "two"}
    assert _parse_header_pairs(None) == {}


def test_intervals_are_clamped(monkeypatch):
    monkeypatch.setenv("AQUADASH_LIVENESS_INTERVAL_SECONDS", "0.1")
    monkeypatch.setenv("AQUADASH_COMMAND_TIMEOUT_SECONDS", "99999")
    settings = Settings(_env_file=None)
    assert settings.liveness_interval_seconds == 1.0
    assert settings.command_timeout_seconds == 3600.0


@pytest.mark.parametrize("prefix", ["", "simon/+", "#"])
def test_topic_prefix_rejects_wildcards(prefix):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, topic_prefix=prefix)


def test_topic_helpers():
    settings = Settings(_env_file=None, topic_prefix="/lab/")
    assert settings.telemetry_filter == "lab/+/data"
    assert settings.device_topic("pond-01", "calibrate") == "lab/pond-01/calibrate"
