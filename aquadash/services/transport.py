"""Single shared MQTT connection with multiplexed subscription handles."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Callable, Dict, List, Optional

from aiomqtt import Client, MqttError, Topic

from aquadash.config import Settings
from aquadash.errors import TransportNotConnected
from aquadash.models import ConnectionStatus

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]
StatusListener = Callable[[ConnectionStatus], None]


class Subscription:
    """Handle returned by :meth:`MqttSession.subscribe`.

    Closing a handle never affects other handles on the same filter.
    """

    def __init__(self, session: "MqttSession", topic_filter: str, handler: MessageHandler, qos: int):
        self.session = session
        self.topic_filter = topic_filter
        self.handler = handler
        self.qos = qos
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.session._release(self)


class MqttSession:
    """Own one broker connection, reconnect on failure, fan messages out to handles."""

    def __init__(self, settings: Settings, client_factory: Callable[[], Client] | None = None):
        self.settings = settings
        self._client_factory = client_factory or self._build_client
        self._client: Client | None = None
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._status_listeners: List[StatusListener] = []
        self.status = ConnectionStatus.CONNECTING
        self.last_error: Optional[str] = None
        self.connect_attempts = 0

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED and self._client is not None

    @property
    def active_filters(self) -> List[str]:
        return list(self._subscriptions)

    def _build_client(self) -> Client:
        settings = self.settings
        kwargs = {
            "port": settings.mqtt_port,
            "username": settings.mqtt_username,
            "password": settings.mqtt_password,
            "identifier": settings.mqtt_client_id(),
            "keepalive": settings.mqtt_keepalive_seconds,
            "transport": settings.mqtt_transport,
        }
        if settings.mqtt_websocket_path:
            kwargs["websocket_path"] = settings.mqtt_websocket_path
        if settings.mqtt_tls:
            kwargs["tls_context"] = ssl.create_default_context()
        return Client(settings.mqtt_host, **kwargs)

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def _remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _remove

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info("MQTT session %s", status.value)
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("MQTT status listener failed")

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="mqtt-session")

    async def stop(self) -> None:
        self._stop.set()
        client = self._client
        if client is not None and self.status == ConnectionStatus.CONNECTED:
            for topic_filter in list(self._subscriptions):
                try:
                    await client.unsubscribe(topic_filter)
                except MqttError as exc:
                    logger.debug("Unsubscribe from %s during shutdown failed: %s", topic_filter, exc)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._client = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _run(self) -> None:
        while not self._stop.is_set():
            self.connect_attempts += 1
            self._set_status(ConnectionStatus.CONNECTING)
            try:
                async with self._client_factory() as client:
                    self._client = client
                    self.last_error = None
                    self._set_status(ConnectionStatus.CONNECTED)
                    await self._resubscribe(client)
                    await self._listen(client)
            except asyncio.CancelledError:
                break
            except MqttError as exc:
                self.last_error = str(exc)
                logger.warning("MQTT connection error: %s", exc)
            except Exception as exc:
                self.last_error = str(exc)
                logger.exception("Unhandled error in MQTT session")
            finally:
                self._client = None
            if self._stop.is_set():
                break
            self._set_status(ConnectionStatus.DISCONNECTED)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.settings.mqtt_reconnect_seconds)
            except asyncio.TimeoutError:
                continue

    async def _resubscribe(self, client: Client) -> None:
        for topic_filter, handles in list(self._subscriptions.items()):
            if not handles:
                continue
            await client.subscribe(topic_filter, qos=max(handle.qos for handle in handles))
            logger.debug("Subscribed to %s", topic_filter)

    async def _listen(self, client: Client) -> None:
        async for message in client.messages:
            if self._stop.is_set():
                break
            payload = message.payload
            if isinstance(payload, str):
                payload = payload.encode("utf-8")
            elif not isinstance(payload, (bytes, bytearray)):
                payload = b"" if payload is None else str(payload).encode("utf-8")
            self._deliver(message.topic, bytes(payload))

    def dispatch(self, topic: str, payload: bytes) -> int:
        """Deliver one message to every matching handle; returns the handler count."""

        return self._deliver(Topic(topic), payload)

    def _deliver(self, topic: Topic, payload: bytes) -> int:
        if self._stop.is_set():
            return 0
        delivered = 0
        for topic_filter, handles in list(self._subscriptions.items()):
            if not topic.matches(topic_filter):
                continue
            for handle in list(handles):
                if handle.closed:
                    continue
                delivered += 1
                try:
                    handle.handler(topic.value, payload)
                except Exception:
                    logger.exception("Subscription handler for %s failed", topic_filter)
        return delivered

    async def subscribe(self, topic_filter: str, handler: MessageHandler, *, qos: int = 1) -> Subscription:
        handle = Subscription(self, topic_filter, handler, qos)
        handles = self._subscriptions.setdefault(topic_filter, [])
        handles.append(handle)
        if len(handles) == 1 and self.connected:
            try:
                await self._client.subscribe(topic_filter, qos=qos)
            except MqttError as exc:
                # Picked up again by the resubscribe after the next reconnect.
                logger.warning("Subscribe to %s failed: %s", topic_filter, exc)
        return handle

    async def _release(self, handle: Subscription) -> None:
        handles = self._subscriptions.get(handle.topic_filter)
        if not handles or handle not in handles:
            return
        handles.remove(handle)
        if handles:
            return
        del self._subscriptions[handle.topic_filter]
        if self.connected:
            try:
                await self._client.unsubscribe(handle.topic_filter)
            except MqttError as exc:
                logger.warning("Unsubscribe from %s failed: %s", handle.topic_filter, exc)

    async def publish(self, topic: str, payload: bytes | str, *, qos: int = 1) -> None:
        """Publish and wait for the broker acknowledgment."""

        client = self._client
        if client is None or not self.connected:
            raise TransportNotConnected("MQTT broker is not connected")
        await client.publish(topic, payload=payload, qos=qos)
