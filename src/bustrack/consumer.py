"""Passenger-side bus position consumer.

Subscribes to one trip's topic and turns every received fix into a
:class:`BusPosition` relative to the passenger's origin station. The
distance/duration comes from the backend route service; this module only
consumes it. Failures degrade: a dead transport shows up as
``connected == False`` and a failed distance lookup yields a position
without distance/ETA.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from bustrack.exceptions import TransitError
from bustrack.models.route import RouteStation, Station
from bustrack.models.tracking import BusPosition, DistanceResult, LocationUpdate
from bustrack.realtime import RealtimeChannel, Subscription

_logger = logging.getLogger(__name__)

DistanceLookup = Callable[[float, float, float, float], Awaitable[DistanceResult]]
"""``(user_lng, user_lat, other_lng, other_lat)`` -> distance/duration."""


class BusTracking:
    """A live subscription to one trip's bus position.

    Iterate it (``async for position in tracking``) for a stream of
    positions, or read :attr:`latest`. Cancel to leave the topic.
    """

    def __init__(
        self,
        trip_id: int,
        origin: Station | RouteStation,
        channel: RealtimeChannel,
        lookup: DistanceLookup,
        *,
        max_buffered: int = 100,
    ) -> None:
        self.trip_id = trip_id
        self.origin = origin
        self._channel = channel
        self._lookup = lookup
        self._subscription: Subscription | None = None
        self._queue: asyncio.Queue[BusPosition | None] = asyncio.Queue(maxsize=max_buffered)
        self._pending: set[asyncio.Task[None]] = set()
        self._latest: BusPosition | None = None
        self._error: TransitError | None = None
        self._cancelled = False

    @property
    def connected(self) -> bool:
        """Whether the tracking transport is currently up for this subscription."""
        return self._subscription is not None and not self._cancelled and self._channel.is_tracking_connected

    @property
    def latest(self) -> BusPosition | None:
        return self._latest

    @property
    def error(self) -> TransitError | None:
        """Why the subscription could not be opened, if it failed."""
        return self._error

    async def _open(self) -> None:
        try:
            self._subscription = await self._channel.connect_tracking(self.trip_id, self._on_update, subscriber=self)
        except TransitError as exc:
            _logger.warning("Could not subscribe to trip %s", self.trip_id, exc_info=True)
            self._error = exc

    def _on_update(self, update: LocationUpdate) -> None:
        if self._cancelled:
            return
        task = asyncio.get_running_loop().create_task(self._resolve(update))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _resolve(self, update: LocationUpdate) -> None:
        distance: DistanceResult | None = None
        try:
            distance = await self._lookup(
                self.origin.longitude,
                self.origin.latitude,
                update.longitude,
                update.latitude,
            )
        except TransitError:
            _logger.warning("Distance lookup failed for trip %s", self.trip_id, exc_info=True)

        position = BusPosition(
            trip_id=self.trip_id,
            bus_lat=update.latitude,
            bus_lng=update.longitude,
            distance_km=distance.distance_km if distance is not None else None,
            eta_minutes=distance.duration_minutes if distance is not None else None,
            captured_at=update.captured_at,
        )
        if self._cancelled:
            return
        # Lookups may finish out of order; latest only moves forward in time.
        if self._latest is None or position.captured_at >= self._latest.captured_at:
            self._latest = position
        self._put(position)

    def _put(self, item: BusPosition | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    async def positions(self) -> AsyncIterator[BusPosition]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    def __aiter__(self) -> AsyncIterator[BusPosition]:
        return self.positions()

    async def cancel(self) -> None:
        """Leave the trip topic. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._pending):
            task.cancel()
        self._put(None)
        if self._subscription is not None:
            await self._subscription.cancel()

    async def __aenter__(self) -> BusTracking:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.cancel()


class BusPositionConsumer:
    """Opens :class:`BusTracking` subscriptions on a shared channel."""

    def __init__(self, channel: RealtimeChannel, lookup: DistanceLookup) -> None:
        self._channel = channel
        self._lookup = lookup

    async def track(self, trip_id: int, origin: Station | RouteStation) -> BusTracking:
        tracking = BusTracking(trip_id, origin, self._channel, self._lookup)
        await tracking._open()
        return tracking
