"""Real-time channel: reconnecting publish/subscribe over hub connections.

Two independent logical connections are managed:

* the tracking hub, multiplexing one topic per trip; every topic keeps a
  map of subscriber key -> callback and is only unregistered from the
  hub once its last subscriber leaves. The hub connection itself is
  closed when no trip topic remains.
* the notification hub, scoped to one user with a single callback.

The channel is an explicit object built around an injected
:data:`HubConnectionFactory`, so a fake connection can stand in for the
broker in tests. Reconnecting after a transport drop is the hub
connection's job; the channel only starts, stops and dispatches.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Hashable, Mapping
from enum import StrEnum
from typing import Any, Protocol

from pydantic import ValidationError

from bustrack._constants import NOTIFICATION_EVENT, TRACKING_HUB, location_event, notification_hub
from bustrack.exceptions import HubError
from bustrack.models.notification import Notification
from bustrack.models.tracking import LocationUpdate

_logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]
LocationCallback = Callable[[LocationUpdate], None]
NotificationCallback = Callable[[Notification], None]

DEFAULT_SUBSCRIBER = "default"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class HubConnection(Protocol):
    """One persistent, auto-reconnecting connection to a hub endpoint."""

    @property
    def state(self) -> ConnectionState:
        ...

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    def on(self, event: str, handler: EventHandler) -> None:
        ...

    def off(self, event: str) -> None:
        ...

    async def send(self, event: str, payload: Mapping[str, Any]) -> None:
        ...


HubConnectionFactory = Callable[[str], HubConnection]
"""Builds a connection for a hub path such as ``trackingHub``."""


class Subscription:
    """Cancellable handle returned by the channel's ``connect_*`` methods."""

    def __init__(self, topic: str, cancel: Callable[[], Awaitable[None]]) -> None:
        self.topic = topic
        self._cancel = cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def cancel(self) -> None:
        """Release this subscription. Repeated calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled = True
        await self._cancel()

    def __repr__(self) -> str:
        return f"Subscription(topic={self.topic!r}, cancelled={self._cancelled})"


class RealtimeChannel:
    """Tracking and notification topics over two hub connections."""

    def __init__(self, connection_factory: HubConnectionFactory) -> None:
        self._factory = connection_factory
        self._tracking: HubConnection | None = None
        self._tracking_lock = asyncio.Lock()
        self._tracking_topics: dict[int, dict[Hashable, LocationCallback]] = {}
        self._notifications: HubConnection | None = None
        self._notifications_lock = asyncio.Lock()
        self._notification_user: str | None = None
        self._notification_callback: NotificationCallback | None = None
        self._opened = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def tracking_state(self) -> ConnectionState:
        return self._tracking.state if self._tracking is not None else ConnectionState.DISCONNECTED

    @property
    def notification_state(self) -> ConnectionState:
        return self._notifications.state if self._notifications is not None else ConnectionState.DISCONNECTED

    @property
    def is_closed(self) -> bool:
        """Whether the channel was used and no longer holds any hub connection."""
        return self._opened and self._tracking is None and self._notifications is None

    @property
    def is_tracking_connected(self) -> bool:
        return self.tracking_state == ConnectionState.CONNECTED

    @property
    def is_notifications_connected(self) -> bool:
        return self.notification_state == ConnectionState.CONNECTED

    def tracked_trips(self) -> list[int]:
        return list(self._tracking_topics)

    def subscriber_count(self, trip_id: int) -> int:
        return len(self._tracking_topics.get(trip_id, {}))

    # ------------------------------------------------------------------
    # Tracking topics
    # ------------------------------------------------------------------

    async def _ensure_tracking(self) -> HubConnection:
        if self._tracking is not None:
            return self._tracking
        connection = self._factory(TRACKING_HUB)
        await connection.start()
        self._tracking = connection
        self._opened = True
        _logger.debug("Tracking hub started")
        return connection

    async def _close_tracking(self) -> None:
        connection = self._tracking
        self._tracking = None
        if connection is None:
            return
        await connection.stop()
        _logger.debug("Tracking hub stopped")

    async def connect_tracking(
        self,
        trip_id: int,
        on_update: LocationCallback,
        *,
        subscriber: Hashable = DEFAULT_SUBSCRIBER,
    ) -> Subscription:
        """Register *on_update* for location updates of *trip_id*.

        Connecting again with the same *subscriber* key only swaps the
        callback. A different key adds an interested party; the hub
        registration is shared either way.
        """
        async with self._tracking_lock:
            connection = await self._ensure_tracking()
            callbacks = self._tracking_topics.get(trip_id)
            if callbacks is None:
                callbacks = {}
                self._tracking_topics[trip_id] = callbacks
                connection.on(location_event(trip_id), functools.partial(self._dispatch_location, trip_id))
                _logger.debug("Registered tracking topic for trip %s", trip_id)
            callbacks[subscriber] = on_update

        return Subscription(
            location_event(trip_id),
            functools.partial(self._release_tracking, trip_id, subscriber, on_update),
        )

    async def _release_tracking(self, trip_id: int, subscriber: Hashable, on_update: LocationCallback) -> None:
        # A newer callback under the same key owns the slot now.
        if self._tracking_topics.get(trip_id, {}).get(subscriber) is not on_update:
            return
        await self.disconnect_tracking(trip_id, subscriber=subscriber)

    async def disconnect_tracking(
        self,
        trip_id: int | None = None,
        *,
        subscriber: Hashable = DEFAULT_SUBSCRIBER,
    ) -> None:
        """Drop a subscriber from *trip_id*, or every topic when ``None``.

        The topic is unregistered when its last subscriber leaves and the
        hub connection is closed when no topic remains.
        """
        async with self._tracking_lock:
            connection = self._tracking
            if trip_id is None:
                trips = list(self._tracking_topics)
                self._tracking_topics.clear()
                if connection is not None:
                    for trip in trips:
                        connection.off(location_event(trip))
                await self._close_tracking()
                return

            callbacks = self._tracking_topics.get(trip_id)
            if callbacks is None:
                return
            callbacks.pop(subscriber, None)
            if callbacks:
                return
            del self._tracking_topics[trip_id]
            if connection is not None:
                connection.off(location_event(trip_id))
            _logger.debug("Unregistered tracking topic for trip %s", trip_id)
            if not self._tracking_topics:
                await self._close_tracking()

    async def publish_location(self, update: LocationUpdate) -> None:
        """Publish a fix on its trip topic."""
        connection = self._tracking
        if connection is None:
            raise HubError("Tracking hub is not started")
        await connection.send(location_event(update.trip_id), update.to_payload())

    def _dispatch_location(self, trip_id: int, payload: dict[str, Any]) -> None:
        try:
            update = LocationUpdate.model_validate({**payload, "tripId": trip_id})
        except ValidationError:
            _logger.debug("Dropping malformed location update for trip %s", trip_id, exc_info=True)
            return
        # Copy first: a callback may (un)register subscribers while we iterate.
        for callback in list(self._tracking_topics.get(trip_id, {}).values()):
            try:
                callback(update)
            except Exception:
                _logger.warning("Location callback failed for trip %s", trip_id, exc_info=True)

    # ------------------------------------------------------------------
    # Notification topic
    # ------------------------------------------------------------------

    async def connect_notifications(self, user_id: str, on_notification: NotificationCallback) -> Subscription:
        """Listen for *user_id*'s notifications; reconnecting swaps the callback."""
        async with self._notifications_lock:
            if self._notifications is not None and self._notification_user != user_id:
                await self._close_notifications()
            self._notification_callback = on_notification
            if self._notifications is None:
                connection = self._factory(notification_hub(user_id))
                connection.on(NOTIFICATION_EVENT, self._dispatch_notification)
                try:
                    await connection.start()
                except Exception:
                    self._notification_callback = None
                    raise
                self._notifications = connection
                self._notification_user = user_id
                self._opened = True
                _logger.debug("Notification hub started")

        return Subscription(NOTIFICATION_EVENT, functools.partial(self._release_notifications, on_notification))

    async def _release_notifications(self, on_notification: NotificationCallback) -> None:
        if self._notification_callback is on_notification:
            await self.disconnect_notifications()

    async def _close_notifications(self) -> None:
        connection = self._notifications
        self._notifications = None
        self._notification_user = None
        if connection is None:
            return
        connection.off(NOTIFICATION_EVENT)
        await connection.stop()
        _logger.debug("Notification hub stopped")

    async def disconnect_notifications(self) -> None:
        async with self._notifications_lock:
            self._notification_callback = None
            await self._close_notifications()

    def _dispatch_notification(self, payload: dict[str, Any]) -> None:
        callback = self._notification_callback
        if callback is None:
            return
        try:
            notification = Notification.model_validate(payload)
        except ValidationError:
            _logger.debug("Dropping malformed notification", exc_info=True)
            return
        try:
            callback(notification)
        except Exception:
            _logger.warning("Notification callback failed", exc_info=True)

    async def disconnect_all(self) -> None:
        await self.disconnect_tracking()
        await self.disconnect_notifications()
