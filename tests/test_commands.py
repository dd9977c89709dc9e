from __future__ import annotations

import pytest
from aiomqtt import MqttError

from aquadash.errors import CommandPublishError, CommandTimeout, TransportNotConnected
from aquadash.services.commands import CommandChannel


@pytest.mark.anyio("asyncio")
async def test_thresholds_published_to_offset_topic(settings, mqtt_session, fake_client):
    mqtt_session.start()
    channel = CommandChannel(settings, mqtt_session)

    command_id = await channel.send_thresholds("pond-01", {"ph_good": 6.5, "ph_bad": 8.5})

    assert command_id
    assert fake_client.published_json() == [
        ("simonair/pond-01/offset", {"threshold": {"ph_good": 6.5, "ph_bad": 8.5}})
    ]
    assert fake_client.published[0][2] == 1


@pytest.mark.anyio("asyncio")
async def test_not_connected_is_rejected(settings, mqtt_session, fake_client):
    channel = CommandChannel(settings, mqtt_session)
    with pytest.raises(TransportNotConnected):
        await channel.send_calibration("pond-01", {"ph": {"m": 1, "c": 0}})
    assert fake_client.published == []


@pytest.mark.anyio("asyncio")
async def test_broker_error_becomes_publish_error(settings, mqtt_session, fake_client):
    mqtt_session.start()
    fake_client.publish_error = MqttError("not authorized")
    channel = CommandChannel(settings, mqtt_session)
    with pytest.raises(CommandPublishError) as excinfo:
        await channel.send_calibration("pond-01", {"ph": {"m": 1, "c": 0}})
    assert not isinstance(excinfo.value, CommandTimeout)


@pytest.mark.anyio("asyncio")
async def test_unacknowledged_publish_times_out(settings, mqtt_session, fake_client):
    mqtt_session.start()
    fake_client.publish_delay = 5
    channel = CommandChannel(settings, mqtt_session)
    channel.timeout_seconds = 0.05
    with pytest.raises(CommandTimeout):
        await channel.send_calibration("pond-01", {"ph": {"m": 1, "c": 0}})
