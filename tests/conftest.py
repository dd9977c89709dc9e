from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, Iterable, List, Tuple

import pytest

from aquadash.config import Settings, get_settings
from aquadash.models import ConnectionStatus
from aquadash.services.transport import MqttSession


@pytest.fixture(autouse=True)
def reset_settings_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("AQUADASH_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


class FakeClient:
    """Stands in for ``aiomqtt.Client`` and records broker traffic."""

    def __init__(
        self,
        messages: Iterable[Any] = (),
        enter_error: Exception | None = None,
        listen_error: Exception | None = None,
    ):
        self.subscribed: List[Tuple[str, int]] = []
        self.unsubscribed: List[str] = []
        self.published: List[Tuple[str, Any, int]] = []
        self.publish_error: Exception | None = None
        self.publish_delay: float = 0.0
        self._pending = list(messages)
        self._enter_error = enter_error
        self._listen_error = listen_error
        self._hold = asyncio.Event()

    async def __aenter__(self):
        if self._enter_error is not None:
            raise self._enter_error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def subscribe(self, topic: str, qos: int = 0, **kwargs):
        self.subscribed.append((topic, qos))

    async def unsubscribe(self, topic: str, **kwargs):
        self.unsubscribed.append(topic)

    async def publish(self, topic: str, payload: Any = None, qos: int = 0, **kwargs):
        if self.publish_delay:
            await asyncio.sleep(self.publish_delay)
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos))

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        while self._pending:
            yield self._pending.pop(0)
        if self._listen_error is not None:
            raise self._listen_error
        await self._hold.wait()

    def published_json(self) -> List[Tuple[str, Dict[str, Any]]]:
        return [(topic, json.loads(payload)) for topic, payload, _ in self.published]


class FakeMqttSession(MqttSession):
    """MqttSession that is connected to a FakeClient without running the reconnect loop."""

    def __init__(self, settings: Settings, client: FakeClient | None = None):
        super().__init__(settings)
        self.client = client or FakeClient()

    def start(self) -> None:
        self._stop.clear()
        self._client = self.client
        for topic_filter in self._subscriptions:
            self.client.subscribed.append((topic_filter, 1))
        self._set_status(ConnectionStatus.CONNECTED)

    def disconnect(self) -> None:
        self._client = None
        self._set_status(ConnectionStatus.DISCONNECTED)


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def mqtt_session(settings, fake_client) -> FakeMqttSession:
    return FakeMqttSession(settings, fake_client)


def telemetry(**sections: Any) -> bytes:
    return json.dumps(sections).encode("utf-8")
