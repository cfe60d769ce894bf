"""MQTT link for console telemetry and remote typed commands.

The console announces itself on ``<base>/availability`` ("online" once the
broker accepts the session, "offline" on shutdown or via the last will) and
re-subscribes its command topics after every reconnect.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

AVAILABILITY_ONLINE = "online"
AVAILABILITY_OFFLINE = "offline"

MessageHandler = Callable[[str], None]


class ConsoleMqtt:
    """Thin wrapper over a paho client; every call is a no-op when no broker is configured."""

    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._handlers: dict[str, MessageHandler] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.config.host)

    def connect(self) -> None:
        if not self.enabled:
            self._logger.debug("[mqtt] No MQTT host configured; console telemetry disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc)
                return
            client.loop_start()
            self._client = client

    def _build_client(self) -> mqtt.Client:
        config = self.config
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"homepilot-console-{config.topic_base.replace('/', '-')}",
            clean_session=True,
        )
        if config.username:
            client.username_pw_set(config.username, config.password or "")
        if config.tls_enabled:
            client.tls_set(
                ca_certs=config.ca_cert,
                certfile=config.cert,
                keyfile=config.key,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )
        client.will_set(config.availability_topic, AVAILABILITY_OFFLINE, qos=1, retain=True)
        client.on_connect = self._handle_connect
        return client

    def _handle_connect(self, client, _userdata, _flags, reason_code, _properties=None) -> None:  # type: ignore[no-untyped-def]
        if reason_code.is_failure:
            self._logger.warning("[mqtt] Broker refused the session: %s", reason_code)
            return
        self._logger.info("[mqtt] Connected to %s:%s", self.config.host, self.config.port)
        client.publish(self.config.availability_topic, AVAILABILITY_ONLINE, qos=1, retain=True)
        for topic in list(self._handlers):
            client.subscribe(topic)

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client is None:
            return
        client.publish(self.config.availability_topic, AVAILABILITY_OFFLINE, qos=1, retain=True)
        client.loop_stop()
        client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            return
        info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("[mqtt] Publish to %s failed (rc=%s)", topic, info.rc)

    def publish_json(self, topic: str, payload: Any, retain: bool = False) -> None:
        self.publish(topic, json.dumps(payload, default=str), retain=retain)

    def subscribe(self, topic: str, on_message: MessageHandler) -> None:
        """Deliver decoded payloads on ``topic`` to ``on_message``; kept across reconnects."""
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")

        def _deliver(_client, _userdata, message):  # type: ignore[no-untyped-def]
            text = message.payload.decode("utf-8", errors="ignore")
            try:
                on_message(text)
            except Exception as exc:
                self._logger.error("[mqtt] Handler for '%s' failed: %s", topic, exc, exc_info=True)

        self._handlers[topic] = on_message
        client.message_callback_add(topic, _deliver)
        result, _mid = client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Subscribing to %s failed (rc=%s); retrying on reconnect", topic, result)
