"""Tests for topic reference counting and callback dispatch on the channel."""

from __future__ import annotations

import pytest

from bustrack.exceptions import HubError
from bustrack.models.notification import Notification
from bustrack.models.position import PositionFix
from bustrack.models.tracking import LocationUpdate
from bustrack.realtime import ConnectionState, RealtimeChannel


def _payload(lat: float = 30.0, lng: float = 31.0) -> dict:
    return {"driverId": "driver-1", "latitude": lat, "longitude": lng, "capturedAt": "2026-03-01T08:00:00Z"}


@pytest.mark.asyncio
async def test_reconnect_same_trip_swaps_callback(hub) -> None:
    channel = RealtimeChannel(hub)
    first: list[LocationUpdate] = []
    second: list[LocationUpdate] = []

    await channel.connect_tracking(5, first.append)
    await channel.connect_tracking(5, second.append)

    connection = hub.for_hub("trackingHub")[0]
    assert len(hub.connections) == 1
    assert connection.start_calls == 1
    assert connection.on_calls == ["ReceiveLocationUpdate/5"]

    connection.emit("ReceiveLocationUpdate/5", _payload())
    assert first == []
    assert len(second) == 1
    assert second[0].trip_id == 5


@pytest.mark.asyncio
async def test_topic_survives_until_last_subscriber_leaves(hub) -> None:
    channel = RealtimeChannel(hub)
    await channel.connect_tracking(5, lambda update: None, subscriber="driver")
    await channel.connect_tracking(5, lambda update: None, subscriber="passenger")
    connection = hub.connections[0]
    assert channel.subscriber_count(5) == 2

    await channel.disconnect_tracking(5, subscriber="driver")
    assert connection.off_calls == []
    assert connection.stop_calls == 0
    assert channel.tracked_trips() == [5]

    await channel.disconnect_tracking(5, subscriber="passenger")
    assert connection.off_calls == ["ReceiveLocationUpdate/5"]
    assert connection.stop_calls == 1
    assert channel.tracking_state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connection_kept_while_other_trips_remain(hub) -> None:
    channel = RealtimeChannel(hub)
    await channel.connect_tracking(1, lambda update: None)
    await channel.connect_tracking(2, lambda update: None)

    await channel.disconnect_tracking(1)

    connection = hub.connections[0]
    assert connection.off_calls == ["ReceiveLocationUpdate/1"]
    assert connection.stop_calls == 0
    assert channel.is_tracking_connected


@pytest.mark.asyncio
async def test_disconnect_unknown_trip_is_noop(hub) -> None:
    channel = RealtimeChannel(hub)
    await channel.disconnect_tracking(99)
    await channel.disconnect_tracking()
    assert hub.connections == []


@pytest.mark.asyncio
async def test_disconnect_everything(hub) -> None:
    channel = RealtimeChannel(hub)
    await channel.connect_tracking(1, lambda update: None)
    await channel.connect_tracking(2, lambda update: None, subscriber="other")

    await channel.disconnect_tracking()

    connection = hub.connections[0]
    assert sorted(connection.off_calls) == ["ReceiveLocationUpdate/1", "ReceiveLocationUpdate/2"]
    assert connection.stop_calls == 1
    assert channel.tracked_trips() == []


@pytest.mark.asyncio
async def test_callback_may_unsubscribe_during_dispatch(hub) -> None:
    channel = RealtimeChannel(hub)
    seen: list[str] = []

    def leaving(update: LocationUpdate) -> None:
        seen.append("leaving")
        channel._tracking_topics[5].pop("leaving")

    def staying(update: LocationUpdate) -> None:
        seen.append("staying")

    await channel.connect_tracking(5, leaving, subscriber="leaving")
    await channel.connect_tracking(5, staying, subscriber="staying")

    hub.connections[0].emit("ReceiveLocationUpdate/5", _payload())

    assert seen == ["leaving", "staying"]
    assert channel.subscriber_count(5) == 1


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_others(hub) -> None:
    channel = RealtimeChannel(hub)
    received: list[LocationUpdate] = []

    def broken(update: LocationUpdate) -> None:
        raise RuntimeError("boom")

    await channel.connect_tracking(5, broken, subscriber="broken")
    await channel.connect_tracking(5, received.append, subscriber="ok")

    hub.connections[0].emit("ReceiveLocationUpdate/5", _payload())

    assert len(received) == 1


@pytest.mark.asyncio
async def test_malformed_update_is_dropped(hub) -> None:
    channel = RealtimeChannel(hub)
    received: list[LocationUpdate] = []
    await channel.connect_tracking(5, received.append)

    hub.connections[0].emit("ReceiveLocationUpdate/5", {"driverId": "driver-1"})

    assert received == []


@pytest.mark.asyncio
async def test_stale_subscription_cancel_is_noop(hub) -> None:
    channel = RealtimeChannel(hub)
    old = await channel.connect_tracking(5, lambda update: None)
    await channel.connect_tracking(5, lambda update: None)

    await old.cancel()

    assert old.cancelled
    assert channel.subscriber_count(5) == 1
    assert hub.connections[0].stop_calls == 0


@pytest.mark.asyncio
async def test_subscription_cancel_releases_topic(hub) -> None:
    channel = RealtimeChannel(hub)
    subscription = await channel.connect_tracking(5, lambda update: None)

    await subscription.cancel()
    await subscription.cancel()

    assert channel.tracked_trips() == []
    assert hub.connections[0].stop_calls == 1


@pytest.mark.asyncio
async def test_publish_requires_started_connection(hub) -> None:
    channel = RealtimeChannel(hub)
    update = LocationUpdate.from_fix(5, "driver-1", PositionFix.at(30.0, 31.0))

    with pytest.raises(HubError):
        await channel.publish_location(update)


@pytest.mark.asyncio
async def test_publish_echo_reaches_subscribers(hub) -> None:
    hub.echo = True
    channel = RealtimeChannel(hub)
    received: list[LocationUpdate] = []
    await channel.connect_tracking(5, received.append)

    await channel.publish_location(LocationUpdate.from_fix(5, "driver-1", PositionFix.at(30.1, 31.2)))

    assert len(received) == 1
    assert received[0].latitude == 30.1
    assert received[0].driver_id == "driver-1"


@pytest.mark.asyncio
async def test_failed_start_leaves_channel_disconnected(hub) -> None:
    hub.fail_start = True
    channel = RealtimeChannel(hub)

    with pytest.raises(HubError):
        await channel.connect_tracking(5, lambda update: None)

    assert channel.tracked_trips() == []
    assert channel.tracking_state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_state_reflects_transport_drop(hub) -> None:
    channel = RealtimeChannel(hub)
    await channel.connect_tracking(5, lambda update: None)

    hub.connections[0].drop()

    assert channel.tracking_state == ConnectionState.RECONNECTING
    assert not channel.is_tracking_connected


class TestNotifications:
    @pytest.mark.asyncio
    async def test_same_user_swaps_callback(self, hub) -> None:
        channel = RealtimeChannel(hub)
        first: list[Notification] = []
        second: list[Notification] = []

        await channel.connect_notifications("user-1", first.append)
        await channel.connect_notifications("user-1", second.append)

        assert len(hub.connections) == 1
        connection = hub.connections[0]
        assert connection.hub == "notificationHub/user-1"
        assert connection.on_calls == ["ReceiveNotification"]

        connection.emit("ReceiveNotification", {"notifid": 3, "msg": "Bus is 5 minutes away"})
        assert first == []
        assert second[0].id == 3
        assert second[0].message == "Bus is 5 minutes away"

    @pytest.mark.asyncio
    async def test_different_user_restarts_connection(self, hub) -> None:
        channel = RealtimeChannel(hub)
        await channel.connect_notifications("user-1", lambda notification: None)
        await channel.connect_notifications("user-2", lambda notification: None)

        old, new = hub.connections
        assert old.stop_calls == 1
        assert new.hub == "notificationHub/user-2"
        assert channel.is_notifications_connected

    @pytest.mark.asyncio
    async def test_independent_of_tracking(self, hub) -> None:
        channel = RealtimeChannel(hub)
        await channel.connect_tracking(5, lambda update: None)
        await channel.connect_notifications("user-1", lambda notification: None)

        await channel.disconnect_notifications()

        assert channel.is_tracking_connected
        assert not channel.is_notifications_connected

    @pytest.mark.asyncio
    async def test_disconnect_all(self, hub) -> None:
        channel = RealtimeChannel(hub)
        await channel.connect_tracking(5, lambda update: None)
        await channel.connect_notifications("user-1", lambda notification: None)

        await channel.disconnect_all()

        assert all(connection.stop_calls == 1 for connection in hub.connections)


@pytest.mark.asyncio
async def test_channel_closed_after_last_connection_released(hub) -> None:
    channel = RealtimeChannel(hub)
    assert not channel.is_closed

    subscription = await channel.connect_tracking(5, lambda update: None)
    assert not channel.is_closed

    await subscription.cancel()
    assert channel.is_closed
