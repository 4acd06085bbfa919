"""MQTT-backed hub connection.

Each hub maps to a topic namespace ``{prefix}/{hub}/{event}``. paho's
network thread owns connecting and reconnecting (exponential backoff via
``reconnect_delay_set``); everything it observes is marshalled onto the
asyncio loop with ``call_soon_threadsafe`` so handlers and state only
change on the loop thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Mapping
from typing import Any, cast

import paho.mqtt.client as mqtt

from bustrack.config import TransitConfig
from bustrack.exceptions import HubError
from bustrack.realtime import ConnectionState, EventHandler, HubConnectionFactory


def decode_hub_payload(payload: bytes) -> dict[str, Any]:
    """Parse a hub message body into a JSON object."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("Hub payload is not a JSON object")
    return parsed


def _build_client_id(hub: str) -> str:
    safe_hub = "".join(ch if ch.isalnum() else "-" for ch in hub)
    return f"bustrack-{safe_hub}-{secrets.token_hex(4)}"


class MqttHubConnection:
    """Threaded paho-mqtt connection that dispatches hub events onto an asyncio loop."""

    def __init__(
        self,
        config: TransitConfig,
        hub: str,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._hub = hub
        self._prefix = f"{config.hub_topic_prefix.strip('/')}/{hub}/"
        self._logger = logger or logging.getLogger(__name__)
        self._handlers: dict[str, EventHandler] = {}
        self._state = ConnectionState.DISCONNECTED
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def hub(self) -> str:
        return self._hub

    def topic_for(self, event: str) -> str:
        return f"{self._prefix}{event}"

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            self._logger.debug("Hub %s state %s -> %s", self._hub, self._state, state)
            self._state = state

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _call_soon(self, callback: Any, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _on_connect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            self._logger.warning("Hub %s connect failed: %s", self._hub, reason_code)
            return
        self._call_soon(self._handle_connected)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        self._logger.debug("Hub %s disconnected: %s", self._hub, reason_code)
        self._call_soon(self._handle_dropped)

    def _on_message(self, _client: Any, _userdata: Any, msg: Any) -> None:
        try:
            payload = decode_hub_payload(msg.payload)
        except (UnicodeDecodeError, ValueError):
            self._logger.debug("Hub %s payload parse failure topic=%s", self._hub, msg.topic, exc_info=True)
            return
        self._call_soon(self._dispatch, msg.topic, payload)

    # ------------------------------------------------------------------
    # Loop-thread handlers
    # ------------------------------------------------------------------

    def _handle_connected(self) -> None:
        client = self._client
        if client is None:
            return
        self._set_state(ConnectionState.CONNECTED)
        for event in list(self._handlers):
            client.subscribe(self.topic_for(event), qos=0)

    def _handle_dropped(self) -> None:
        if self._client is None:
            return
        self._set_state(ConnectionState.RECONNECTING)

    def _dispatch(self, topic: str, payload: dict[str, Any]) -> None:
        if not topic.startswith(self._prefix):
            return
        handler = self._handlers.get(topic[len(self._prefix) :])
        if handler is None:
            return
        handler(payload)

    # ------------------------------------------------------------------
    # HubConnection interface
    # ------------------------------------------------------------------

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=_build_client_id(self._hub),
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if self._config.access_token:
            client.username_pw_set(self._config.hub_username, self._config.access_token)
        if self._config.hub_tls:
            client.tls_set()
        client.reconnect_delay_set(
            min_delay=self._config.hub_reconnect_min_delay,
            max_delay=self._config.hub_reconnect_max_delay,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def _connect(self, client: mqtt.Client) -> None:
        # connect_async + loop_start lets the network thread retry the first connect too.
        client.connect_async(self._config.hub_host, self._config.hub_port, keepalive=self._config.hub_keepalive)
        client.loop_start()

    async def start(self) -> None:
        """Begin connecting; returns once the network loop is running."""
        if self._client is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._set_state(ConnectionState.CONNECTING)
        client = self._build_client()
        try:
            await self._loop.run_in_executor(None, self._connect, client)
        except (OSError, ValueError) as exc:
            self._set_state(ConnectionState.DISCONNECTED)
            raise HubError(f"Could not start hub {self._hub}: {exc}") from exc
        self._client = client
        self._logger.debug("Hub %s network loop started", self._hub)

    async def stop(self) -> None:
        """Disconnect and join the network thread. Safe to call twice."""
        client = self._client
        self._client = None
        self._set_state(ConnectionState.DISCONNECTED)
        if client is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        await loop.run_in_executor(None, self._shutdown, client)

    def _shutdown(self, client: mqtt.Client) -> None:
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("Hub %s network loop stopped", self._hub)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event] = handler
        if self._client is not None and self._state == ConnectionState.CONNECTED:
            self._client.subscribe(self.topic_for(event), qos=0)

    def off(self, event: str) -> None:
        if self._handlers.pop(event, None) is None:
            return
        if self._client is not None and self._state == ConnectionState.CONNECTED:
            self._client.unsubscribe(self.topic_for(event))

    async def send(self, event: str, payload: Mapping[str, Any]) -> None:
        client = self._client
        if client is None:
            raise HubError(f"Hub {self._hub} is not started")
        info = client.publish(self.topic_for(event), json.dumps(payload, separators=(",", ":")), qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            # Fixes are lossy by contract; the next one supersedes this.
            self._logger.debug("Hub %s dropped publish on %s (rc=%s)", self._hub, event, info.rc)


def mqtt_connection_factory(config: TransitConfig) -> HubConnectionFactory:
    """Factory building :class:`MqttHubConnection` instances for *config*."""

    def _factory(hub: str) -> MqttHubConnection:
        return MqttHubConnection(config, hub)

    return _factory
