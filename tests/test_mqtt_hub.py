"""Tests for the MQTT hub connection (no broker needed)."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from bustrack._mqtt import MqttHubConnection, decode_hub_payload, mqtt_connection_factory
from bustrack.config import TransitConfig
from bustrack.exceptions import HubError
from bustrack.realtime import ConnectionState, RealtimeChannel


class FakeMqttClient:
    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.published: list[tuple[str, str]] = []
        self.loop_running = False
        self.disconnected = False

    def connect_async(self, host: str, port: int, keepalive: int = 60) -> None:
        if self.fail_connect:
            raise OSError("name resolution failed")

    def loop_start(self) -> None:
        self.loop_running = True

    def loop_stop(self) -> None:
        self.loop_running = False

    def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)

    def publish(self, topic: str, payload: str, qos: int = 0) -> Any:
        self.published.append((topic, payload))
        return SimpleNamespace(rc=mqtt.MQTT_ERR_SUCCESS)


def _connection(monkeypatch, client: FakeMqttClient, hub: str = "trackingHub") -> MqttHubConnection:
    connection = MqttHubConnection(TransitConfig(hub_topic_prefix="city"), hub)
    monkeypatch.setattr(connection, "_build_client", lambda: client)
    return connection


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


def test_topic_layout() -> None:
    connection = MqttHubConnection(TransitConfig(hub_topic_prefix="/city/"), "notificationHub/u-1")
    assert connection.topic_for("ReceiveNotification") == "city/notificationHub/u-1/ReceiveNotification"


def test_decode_hub_payload() -> None:
    assert decode_hub_payload(b'{"latitude": 30.0}') == {"latitude": 30.0}
    with pytest.raises(ValueError):
        decode_hub_payload(b"[1, 2]")
    with pytest.raises(ValueError):
        decode_hub_payload(b"not json")


@pytest.mark.asyncio
async def test_send_before_start_raises() -> None:
    connection = MqttHubConnection(TransitConfig(), "trackingHub")
    with pytest.raises(HubError):
        await connection.send("ReceiveLocationUpdate/1", {})


@pytest.mark.asyncio
async def test_start_send_stop(monkeypatch) -> None:
    client = FakeMqttClient()
    connection = _connection(monkeypatch, client)

    await connection.start()
    assert client.loop_running
    assert connection.state == ConnectionState.CONNECTING

    await connection.send("ReceiveLocationUpdate/3", {"latitude": 30.0})
    assert client.published == [("city/trackingHub/ReceiveLocationUpdate/3", '{"latitude":30.0}')]

    await connection.stop()
    await connection.stop()
    assert client.disconnected
    assert not client.loop_running
    assert connection.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_start_failure_raises_hub_error(monkeypatch) -> None:
    connection = _connection(monkeypatch, FakeMqttClient(fail_connect=True))

    with pytest.raises(HubError):
        await connection.start()
    assert connection.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_subscriptions_follow_connection_state(monkeypatch) -> None:
    client = FakeMqttClient()
    connection = _connection(monkeypatch, client)
    connection.on("ReceiveLocationUpdate/1", lambda payload: None)
    await connection.start()

    connection._on_connect(client, None, None, SimpleNamespace(value=0), None)
    await _settle()
    assert connection.state == ConnectionState.CONNECTED
    assert client.subscribed == ["city/trackingHub/ReceiveLocationUpdate/1"]

    connection.on("ReceiveLocationUpdate/2", lambda payload: None)
    connection.off("ReceiveLocationUpdate/1")
    assert client.subscribed[-1] == "city/trackingHub/ReceiveLocationUpdate/2"
    assert client.unsubscribed == ["city/trackingHub/ReceiveLocationUpdate/1"]

    connection._on_disconnect(client, None, None, SimpleNamespace(value=7), None)
    await _settle()
    assert connection.state == ConnectionState.RECONNECTING

    # paho reconnects on its own; topics are subscribed again.
    connection._on_connect(client, None, None, SimpleNamespace(value=0), None)
    await _settle()
    assert connection.state == ConnectionState.CONNECTED
    assert client.subscribed[-1] == "city/trackingHub/ReceiveLocationUpdate/2"
    await connection.stop()


@pytest.mark.asyncio
async def test_messages_dispatch_on_loop(monkeypatch) -> None:
    client = FakeMqttClient()
    connection = _connection(monkeypatch, client)
    received: list[dict[str, Any]] = []
    connection.on("ReceiveLocationUpdate/3", received.append)
    await connection.start()

    connection._on_message(client, None, SimpleNamespace(topic="city/trackingHub/ReceiveLocationUpdate/3", payload=b'{"a": 1}'))
    connection._on_message(client, None, SimpleNamespace(topic="city/trackingHub/ReceiveLocationUpdate/3", payload=b"\xff"))
    connection._on_message(client, None, SimpleNamespace(topic="city/otherHub/ReceiveLocationUpdate/3", payload=b'{"a": 2}'))
    await _settle()

    assert received == [{"a": 1}]
    await connection.stop()


@pytest.mark.asyncio
async def test_channel_over_mqtt_connection(monkeypatch) -> None:
    client = FakeMqttClient()
    factory = mqtt_connection_factory(TransitConfig(hub_topic_prefix="city"))

    def build(hub: str) -> MqttHubConnection:
        connection = factory(hub)
        monkeypatch.setattr(connection, "_build_client", lambda: client)
        return connection

    channel = RealtimeChannel(build)
    updates = []
    await channel.connect_tracking(3, updates.append)
    connection = channel._tracking
    assert isinstance(connection, MqttHubConnection)

    connection._on_message(
        client,
        None,
        SimpleNamespace(
            topic="city/trackingHub/ReceiveLocationUpdate/3",
            payload=b'{"driverId": "d-1", "latitude": 30.0, "longitude": 31.0}',
        ),
    )
    await _settle()

    assert len(updates) == 1
    assert updates[0].trip_id == 3
    await channel.disconnect_all()
    assert not client.loop_running
