"""MQTT push transport and publisher (paho-mqtt)."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import TrackingConfigError, TrackingTransportError
from pylivetrack.models import LocationUpdate

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]
ErrorHandler = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class MqttSettings:
    """Broker connection details."""

    host: str
    port: int = 1883
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = 60
    topic_prefix: str = "active_vehicles"
    client_id: str | None = None

    @classmethod
    def from_config(cls, config: TrackerConfig) -> MqttSettings:
        if not config.mqtt_host:
            raise TrackingConfigError("MQTT requires mqtt_host")
        return cls(
            host=config.mqtt_host,
            port=config.mqtt_port,
            username=config.mqtt_username,
            password=config.mqtt_password,
            tls=config.mqtt_tls,
            keepalive=config.mqtt_keepalive,
            topic_prefix=config.mqtt_topic_prefix,
        )


def vehicle_topic(prefix: str, vehicle_id: str) -> str:
    """Topic carrying updates for one vehicle: ``<prefix>/<vehicleId>``."""
    return f"{prefix.rstrip('/')}/{vehicle_id}"


def encode_update(update: LocationUpdate) -> bytes:
    return json.dumps(update.to_wire(), separators=(",", ":")).encode("utf-8")


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv5,
    )


@dataclass(slots=True)
class _TopicHandler:
    on_message: MessageHandler
    on_error: ErrorHandler


class MqttRuntime:
    """Threaded paho-mqtt runtime that hands messages to an asyncio loop.

    Message and error callbacks always run on the event loop thread via
    ``loop.call_soon_threadsafe``; paho's network thread never calls user
    code directly.
    """

    def __init__(
        self,
        settings: MqttSettings,
        *,
        loop: asyncio.AbstractEventLoop,
        client_factory: Callable[[str], mqtt.Client] = _default_client_factory,
    ) -> None:
        self._settings = settings
        self._loop = loop
        self._client_factory = client_factory
        self._client: mqtt.Client | None = None
        self._running = False
        self._handlers: dict[str, list[_TopicHandler]] = {}

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def settings(self) -> MqttSettings:
        return self._settings

    def start(self) -> None:
        """Connect to the broker and start paho's network thread.

        Raises
        ------
        TrackingTransportError
            When the broker cannot be reached.
        """
        if self._running:
            return
        settings = self._settings
        client_id = settings.client_id or f"pylivetrack-{secrets.token_hex(6)}"
        _logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s",
            settings.host,
            settings.port,
            client_id,
        )

        client = self._client_factory(client_id)
        client.enable_logger(_logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if getattr(reason_code, "value", reason_code) != 0:
                _logger.warning("MQTT connect failed: %s", reason_code)
                self._loop.call_soon_threadsafe(self._report_error, f"connect failed: {reason_code}")
                return
            _logger.debug("MQTT connected reason=%s", reason_code)
            for topic in list(self._handlers):
                c.subscribe(topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                self._loop.call_soon_threadsafe(self._dispatch, msg.topic, bytes(msg.payload))
            except RuntimeError:
                _logger.debug("MQTT message after loop shutdown topic=%s", msg.topic)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if not self._running:
                return
            _logger.debug("MQTT disconnected: %s", reason_code)
            try:
                self._loop.call_soon_threadsafe(self._report_error, f"disconnected: {reason_code}")
            except RuntimeError:
                _logger.debug("MQTT disconnect after loop shutdown")

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        except OSError as exc:
            raise TrackingTransportError(
                f"MQTT connect to {settings.host}:{settings.port} failed: {exc}",
                endpoint=f"mqtt://{settings.host}:{settings.port}",
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        _logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                _logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")

    def add_handler(self, topic: str, on_message: MessageHandler, on_error: ErrorHandler) -> _TopicHandler:
        handler = _TopicHandler(on_message=on_message, on_error=on_error)
        first = topic not in self._handlers
        self._handlers.setdefault(topic, []).append(handler)
        if first and self._client is not None:
            _logger.debug("MQTT subscribing topic=%s", topic)
            self._client.subscribe(topic, qos=0)
        return handler

    def remove_handler(self, topic: str, handler: _TopicHandler) -> None:
        handlers = self._handlers.get(topic)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._handlers[topic]
            if self._client is not None:
                _logger.debug("MQTT unsubscribing topic=%s", topic)
                self._client.unsubscribe(topic)

    def publish(self, topic: str, payload: bytes, *, qos: int = 0) -> None:
        if self._client is None:
            raise TrackingTransportError("MQTT runtime is not running", endpoint=topic)
        self._client.publish(topic, payload, qos=qos)

    def _dispatch(self, topic: str, payload: bytes) -> None:
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler.on_message(payload)
            except Exception:
                _logger.debug("MQTT handler failed topic=%s", topic, exc_info=True)

    def _report_error(self, reason: str) -> None:
        for handlers in list(self._handlers.values()):
            for handler in list(handlers):
                try:
                    handler.on_error(reason)
                except Exception:
                    _logger.debug("MQTT error handler failed", exc_info=True)


class _MqttConnection:
    def __init__(self, runtime: MqttRuntime, topic: str, handler: _TopicHandler) -> None:
        self._runtime = runtime
        self._topic = topic
        self._handler = handler

    def close(self) -> None:
        self._runtime.remove_handler(self._topic, self._handler)


class MqttPushTransport:
    """Push transport subscribing to ``<prefix>/<vehicleId>`` on a broker."""

    def __init__(self, runtime: MqttRuntime) -> None:
        self._runtime = runtime

    async def connect(
        self,
        vehicle_id: str,
        on_message: MessageHandler,
        on_error: ErrorHandler,
    ) -> _MqttConnection:
        if not self._runtime.is_running:
            await asyncio.get_running_loop().run_in_executor(None, self._runtime.start)
        topic = vehicle_topic(self._runtime.settings.topic_prefix, vehicle_id)
        handler = self._runtime.add_handler(topic, on_message, on_error)
        return _MqttConnection(self._runtime, topic, handler)


class MqttPublisher:
    """Channel sink publishing each accepted update to the vehicle's topic.

    The runtime must already be started; updates published while it is
    down are skipped.
    """

    def __init__(self, runtime: MqttRuntime, *, qos: int = 0) -> None:
        self._runtime = runtime
        self._qos = qos

    def __call__(self, update: LocationUpdate) -> None:
        if not self._runtime.is_running:
            _logger.debug("MQTT runtime not running; skipping publish vehicle=%s", update.vehicle_id)
            return
        topic = vehicle_topic(self._runtime.settings.topic_prefix, update.vehicle_id)
        self._runtime.publish(topic, encode_update(update), qos=self._qos)
