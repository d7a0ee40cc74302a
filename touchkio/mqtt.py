"""MQTT client for the discovery bridge.

paho-mqtt runs its network loop on a background thread; every callback
that reaches TouchKio code is handed back to the asyncio loop with
``call_soon_threadsafe`` so the bridge stays single-threaded.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import threading
from collections.abc import Callable

import paho.mqtt.client as mqtt

from touchkio.config import MqttConfig
from touchkio.utils import mask_secret

MessageHandler = Callable[[str, str], None]

WILL_PAYLOAD = "Terminated"


def _is_mqtt_success(reason_code) -> bool:
    try:
        if hasattr(reason_code, "is_failure"):
            return not bool(reason_code.is_failure)
        if hasattr(reason_code, "value"):
            reason_code = reason_code.value
        return int(reason_code) == 0
    except (TypeError, ValueError):
        return False


class KioskMqtt:
    def __init__(
        self,
        config: MqttConfig,
        client_id: str,
        will_topic: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self.will_topic = will_topic
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscriptions: dict[str, MessageHandler] = {}
        self._on_connected: Callable[[], None] | None = None

    def _call_in_loop(self, callback: Callable[..., None], *args: object) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(callback, *args)
        else:
            callback(*args)

    def connect(self, on_connected: Callable[[], None] | None = None) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT url not configured; discovery bridge disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                self._loop = None
            self._on_connected = on_connected
            callback_kwargs: dict[str, object] = {}
            if hasattr(mqtt, "CallbackAPIVersion"):
                callback_kwargs["callback_api_version"] = mqtt.CallbackAPIVersion.VERSION2
            client = mqtt.Client(
                client_id=self.client_id,
                clean_session=True,
                **callback_kwargs,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            if self.config.tls_enabled:
                client.tls_set(tls_version=getattr(ssl, "PROTOCOL_TLS_CLIENT", ssl.PROTOCOL_TLS))
                if not self.config.verify_certificates:
                    client.tls_insecure_set(True)
            client.will_set(self.will_topic, payload=WILL_PAYLOAD, qos=1, retain=True)
            client.on_connect = self._handle_connect
            client.on_disconnect = self._handle_disconnect
            self._logger.info(
                "[mqtt] MQTT Connecting: %s:%s@%s:%s",
                self.config.username,
                mask_secret(self.config.password),
                self.config.host,
                self.config.port,
            )
            client.reconnect_delay_set(min_delay=1, max_delay=30)
            try:
                client.connect_async(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to MQTT: %s", exc)
                return
            # The network loop retries the first connect as well as later drops
            client.loop_start()
            self._client = client

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.disconnect()
            client.loop_stop()

    def is_connected(self) -> bool:
        client = self._client
        try:
            return bool(client and client.is_connected())
        except Exception:
            return False

    def _handle_connect(self, client, _userdata, _flags, reason_code, properties=None):  # type: ignore[no-untyped-def]
        if not _is_mqtt_success(reason_code):
            self._logger.error("[mqtt] MQTT connection failed (reason=%s)", reason_code)
            return
        self._logger.info("[mqtt] MQTT Connected: %s:%s", self.config.host, self.config.port)
        # Clean sessions drop subscriptions, so every (re)connect restores them
        for topic in list(self._subscriptions):
            result, _mid = client.subscribe(topic)
            if result != mqtt.MQTT_ERR_SUCCESS:
                self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)
        if self._on_connected is not None:
            self._call_in_loop(self._on_connected)

    def _handle_disconnect(self, _client, _userdata, _flags, reason_code, properties=None):  # type: ignore[no-untyped-def]
        if not _is_mqtt_success(reason_code):
            self._logger.warning("[mqtt] MQTT disconnected (reason=%s); paho will reconnect", reason_code)

    def publish(self, topic: str, payload: str, retain: bool = True, qos: int = 1) -> bool:
        client = self._client
        if not client:
            return False
        try:
            result = client.publish(topic, payload=payload, qos=qos, retain=retain)
        except Exception as exc:
            self._logger.debug("[mqtt] Failed to publish MQTT message: %s", exc)
            return False
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to publish topic '%s' (rc=%s)", topic, result.rc)
            return False
        return True

    def subscribe(self, topic: str, on_message: MessageHandler) -> None:
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")

        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            try:
                payload = message.payload.decode("utf-8", errors="ignore")
            except Exception as exc:
                self._logger.error("[mqtt] Undecodable payload on '%s': %s", topic, exc)
                return
            self._call_in_loop(self._deliver, on_message, message.topic, payload)

        self._subscriptions[topic] = on_message
        result, _mid = client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)
        client.message_callback_add(topic, _callback)

    def _deliver(self, handler: MessageHandler, topic: str, payload: str) -> None:
        try:
            handler(topic, payload)
        except Exception as exc:
            self._logger.error(
                "[mqtt] MQTT subscriber callback failed for topic '%s': %s", topic, exc, exc_info=True
            )
