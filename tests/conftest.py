from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import pytest

from bustrack._api.driver import TripAction
from bustrack.exceptions import GeolocationError, HubError
from bustrack.geolocation import PositionOptions
from bustrack.models.route import RouteStation
from bustrack.realtime import ConnectionState, EventHandler


class FakeHubConnection:
    """In-memory hub connection that records every call."""

    def __init__(self, hub: str, registry: FakeHub) -> None:
        self.hub = hub
        self._registry = registry
        self.handlers: dict[str, EventHandler] = {}
        self.on_calls: list[str] = []
        self.off_calls: list[str] = []
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.start_calls = 0
        self.stop_calls = 0
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def start(self) -> None:
        self.start_calls += 1
        if self._registry.fail_start:
            raise HubError("broker unreachable")
        self._state = ConnectionState.CONNECTED

    async def stop(self) -> None:
        self.stop_calls += 1
        self._state = ConnectionState.DISCONNECTED

    def on(self, event: str, handler: EventHandler) -> None:
        self.on_calls.append(event)
        self.handlers[event] = handler

    def off(self, event: str) -> None:
        self.off_calls.append(event)
        self.handlers.pop(event, None)

    async def send(self, event: str, payload: Mapping[str, Any]) -> None:
        self.sent.append((event, dict(payload)))
        # Loop the message back like the broker fan-out would.
        handler = self.handlers.get(event)
        if handler is not None and self._registry.echo:
            handler(dict(payload))

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.handlers[event](payload)

    def drop(self) -> None:
        self._state = ConnectionState.RECONNECTING


class FakeHub:
    """Connection factory handing out :class:`FakeHubConnection` objects."""

    def __init__(self) -> None:
        self.connections: list[FakeHubConnection] = []
        self.fail_start = False
        self.echo = False

    def __call__(self, hub: str) -> FakeHubConnection:
        connection = FakeHubConnection(hub, self)
        self.connections.append(connection)
        return connection

    def for_hub(self, hub: str) -> list[FakeHubConnection]:
        return [conn for conn in self.connections if conn.hub == hub]


class _FakeWatch:
    def __init__(self, source: FakePositionSource) -> None:
        self._source = source
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._source.watch_active = False


class FakePositionSource:
    """Position source driven by the test."""

    def __init__(self) -> None:
        self.watch_active = False
        self.watches: list[_FakeWatch] = []
        self.poll_results: list[dict[str, Any] | Exception] = []
        self.poll_calls = 0
        self.poll_delay = 0.0
        self._on_position: Callable[[Mapping[str, Any]], None] | None = None
        self._on_error: Callable[[GeolocationError], None] | None = None

    def watch_position(self, on_position, on_error, options: PositionOptions) -> _FakeWatch:
        self._on_position = on_position
        self._on_error = on_error
        self.watch_active = True
        watch = _FakeWatch(self)
        self.watches.append(watch)
        return watch

    def push(self, latitude: float, longitude: float, **extra: Any) -> None:
        assert self._on_position is not None
        self._on_position({"coords": {"latitude": latitude, "longitude": longitude}, **extra})

    def fail(self, error: GeolocationError) -> None:
        assert self._on_error is not None
        self._on_error(error)

    async def current_position(self, options: PositionOptions) -> Mapping[str, Any]:
        self.poll_calls += 1
        if self.poll_delay:
            await asyncio.sleep(self.poll_delay)
        if self.poll_results:
            result = self.poll_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return {"latitude": 30.0, "longitude": 31.0}


class FakeTripApi:
    def __init__(self) -> None:
        self.actions: list[tuple[str, TripAction]] = []
        self.checks: list[tuple[int, float, float]] = []
        self.fail_with: Exception | None = None
        self.check_delay = 0.0
        self.cancelled_checks = 0

    async def update_trip_status(self, driver_id: str, action: TripAction) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.actions.append((driver_id, action))

    async def check_next_station(self, trip_id: int, bus_lng: float, bus_lat: float) -> bool:
        self.checks.append((trip_id, bus_lng, bus_lat))
        try:
            await asyncio.sleep(self.check_delay)
        except asyncio.CancelledError:
            self.cancelled_checks += 1
            raise
        return True


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture
def position_source() -> FakePositionSource:
    return FakePositionSource()


@pytest.fixture
def trip_api() -> FakeTripApi:
    return FakeTripApi()


@pytest.fixture
def route_stations() -> list[RouteStation]:
    # Five stops heading east along a line of latitude, ~1.9 km apart.
    return [
        RouteStation(order=order, station_id=100 + order, name=f"Stop {order}", latitude=30.0, longitude=31.0 + 0.02 * (order - 1))
        for order in range(1, 6)
    ]
