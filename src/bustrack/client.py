"""High-level async client for the transit backend."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import aiohttp

from bustrack._api import driver as _driver_api
from bustrack._api import notifications as _notifications_api
from bustrack._api import route as _route_api
from bustrack._api import schedule as _schedule_api
from bustrack._api import station as _station_api
from bustrack._api import tracking as _tracking_api
from bustrack._api.driver import TripAction
from bustrack._mqtt import mqtt_connection_factory
from bustrack._transport import HttpTransport, Transport
from bustrack.broadcaster import EstimateCallback
from bustrack.config import TransitConfig
from bustrack.consumer import BusPositionConsumer, BusTracking
from bustrack.exceptions import TransitError, TripStateError
from bustrack.geolocation import GeolocationSampler, PositionOptions, PositionSource
from bustrack.models.notification import Notification
from bustrack.models.route import RouteEntry, RouteStation, Station
from bustrack.models.schedule import Schedule
from bustrack.models.tracking import DistanceResult
from bustrack.realtime import HubConnectionFactory, RealtimeChannel
from bustrack.route import load_route_stations
from bustrack.storage import JsonFileSessionStore, MemorySessionStore, SessionStore
from bustrack.trip import TripLifecycleController

_logger = logging.getLogger(__name__)


class TransitClient:
    """Async client for the transit REST API and live tracking.

    Usage::

        async with TransitClient(config) as client:
            trip = await client.open_trip(driver_id, source)
            await trip.start()
    """

    def __init__(
        self,
        config: TransitConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        hub_factory: HubConnectionFactory | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport
        self._external_transport = transport is not None
        self._hub_factory = hub_factory or mqtt_connection_factory(config)
        self._channels: list[RealtimeChannel] = []
        self._passenger_channel: RealtimeChannel | None = None

    @property
    def config(self) -> TransitConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TransitClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        channels, self._channels = self._channels, []
        self._passenger_channel = None
        for channel in channels:
            try:
                await channel.disconnect_all()
            except Exception:
                _logger.debug("Channel shutdown failed", exc_info=True)
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._external_transport:
            self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise TransitError("Client not initialized. Use 'async with TransitClient(...) as client:'")
        return self._transport

    def new_channel(self) -> RealtimeChannel:
        """Create a real-time channel closed together with the client."""
        # Channels that already released every connection need no shutdown.
        self._channels = [
            channel
            for channel in self._channels
            if channel is self._passenger_channel or not channel.is_closed
        ]
        channel = RealtimeChannel(self._hub_factory)
        self._channels.append(channel)
        return channel

    def _shared_passenger_channel(self) -> RealtimeChannel:
        if self._passenger_channel is None:
            self._passenger_channel = self.new_channel()
        return self._passenger_channel

    # ------------------------------------------------------------------
    # REST endpoints
    # ------------------------------------------------------------------

    async def update_trip_status(self, driver_id: str, action: TripAction) -> None:
        await _driver_api.update_trip_status(self._require_transport(), driver_id, action)

    async def check_next_station(self, trip_id: int, bus_lng: float, bus_lat: float) -> bool:
        return await _tracking_api.check_next_station(self._require_transport(), trip_id, bus_lng, bus_lat)

    async def get_current_schedule(self, driver_id: str) -> Schedule | None:
        return await _schedule_api.fetch_current_schedule(self._require_transport(), driver_id)

    async def get_driver_schedules(self, driver_id: str) -> list[Schedule]:
        return await _schedule_api.fetch_driver_schedules(self._require_transport(), driver_id)

    async def get_route_for_trip(self, trip_id: int) -> list[RouteEntry]:
        return await _route_api.fetch_route_for_trip(self._require_transport(), trip_id)

    async def get_route_stations(self, trip_id: int) -> list[RouteStation]:
        """Route stops joined with station coordinates (one lookup per stop)."""
        return await load_route_stations(self._require_transport(), trip_id)

    async def get_station(self, name: str) -> Station:
        return await _station_api.fetch_station_by_name(self._require_transport(), name)

    async def get_nearest_station_at_route(self, trip_id: int, longitude: float, latitude: float) -> Station | None:
        return await _route_api.fetch_nearest_station_at_route(self._require_transport(), trip_id, longitude, latitude)

    async def calculate_distance(
        self,
        user_lng: float,
        user_lat: float,
        other_lng: float,
        other_lat: float,
    ) -> DistanceResult:
        return await _route_api.calculate_distance(self._require_transport(), user_lng, user_lat, other_lng, other_lat)

    async def get_notifications(self, user_id: str) -> list[Notification]:
        return await _notifications_api.fetch_notifications(self._require_transport(), user_id)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def resolve_schedule(self, driver_id: str, schedule_id: int | None = None) -> Schedule:
        """The driver's current schedule, or a specific one by id."""
        schedule: Schedule | None
        if schedule_id is not None:
            schedules = await self.get_driver_schedules(driver_id)
            schedule = next((item for item in schedules if item.sch_id == schedule_id), None)
        else:
            schedule = await self.get_current_schedule(driver_id)
        if schedule is None:
            raise TripStateError("No schedule found")
        return schedule

    def _default_store(self) -> SessionStore:
        if self._config.session_path:
            return JsonFileSessionStore(self._config.session_path)
        return MemorySessionStore()

    async def open_trip(
        self,
        driver_id: str,
        source: PositionSource,
        *,
        schedule_id: int | None = None,
        store: SessionStore | None = None,
        on_estimate: EstimateCallback | None = None,
    ) -> TripLifecycleController:
        """Load the driver's schedule and route and build a trip controller.

        A trip persisted as in progress for the same trip id is resumed.
        """
        if not driver_id:
            raise TripStateError("Driver identity is required to run a trip")
        schedule = await self.resolve_schedule(driver_id, schedule_id)
        stations = await self.get_route_stations(schedule.trip_id)

        sampler = GeolocationSampler(
            source,
            poll_interval=self._config.poll_interval,
            options=PositionOptions(timeout=self._config.position_timeout),
        )
        controller = TripLifecycleController(
            api=self,
            channel=self.new_channel(),
            sampler=sampler,
            driver_id=driver_id,
            trip_id=schedule.trip_id,
            store=store if store is not None else self._default_store(),
            route_stations=stations,
            min_duration=timedelta(seconds=self._config.min_trip_duration),
            cadence=self._config.next_station_cadence,
            average_speed_kmh=self._config.average_speed_kmh,
            arrival_radius_km=self._config.arrival_radius_km,
            on_estimate=on_estimate,
        )
        await controller.resume()
        return controller

    def bus_consumer(self, channel: RealtimeChannel | None = None) -> BusPositionConsumer:
        return BusPositionConsumer(channel or self._shared_passenger_channel(), self.calculate_distance)

    async def track_bus(self, trip_id: int, origin: Station | RouteStation) -> BusTracking:
        """Follow a trip's bus relative to the passenger's origin station."""
        return await self.bus_consumer().track(trip_id, origin)
