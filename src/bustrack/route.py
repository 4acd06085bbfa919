"""Route enrichment and next-station estimation.

The route is fetched once per trip and joined with station coordinates
into immutable :class:`RouteStation` values. Estimates are straight-line
(haversine) distances with an ETA at a fixed average speed, so they
ignore traffic and road topology.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence

from bustrack._api.route import fetch_route_for_trip
from bustrack._api.station import fetch_station_by_name
from bustrack._constants import ARRIVAL_RADIUS_KM, AVERAGE_SPEED_KMH, EARTH_RADIUS_KM
from bustrack._transport import Transport
from bustrack.exceptions import TransitError
from bustrack.models.position import PositionFix
from bustrack.models.route import NextStationEstimate, RouteEntry, RouteStation

_logger = logging.getLogger(__name__)


def _round_half_up(value: float, ndigits: int = 0) -> float:
    scale = 10**ndigits
    return math.floor(value * scale + 0.5) / scale


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def estimate_eta_minutes(distance_km: float, average_speed_kmh: float = AVERAGE_SPEED_KMH) -> int:
    return int(_round_half_up(distance_km / average_speed_kmh * 60))


def next_station(
    fix: PositionFix,
    stations: Sequence[RouteStation],
    last_reported_order: int,
    *,
    average_speed_kmh: float = AVERAGE_SPEED_KMH,
) -> NextStationEstimate | None:
    """Nearest station strictly ahead of ``last_reported_order``.

    Stations with ``order <= last_reported_order`` are never considered,
    however close they are. Returns ``None`` at the end of the route.
    """
    best: RouteStation | None = None
    best_distance = math.inf
    for station in sorted(stations, key=lambda candidate: candidate.order):
        if station.order <= last_reported_order:
            continue
        distance = haversine_km(fix.latitude, fix.longitude, station.latitude, station.longitude)
        if distance < best_distance:
            best = station
            best_distance = distance

    if best is None:
        return None
    return NextStationEstimate(
        station_name=best.name,
        distance_km=_round_half_up(best_distance, 1),
        eta_minutes=estimate_eta_minutes(best_distance, average_speed_kmh),
        order=best.order,
    )


class NextStationTracker:
    """Keeps next-station estimates moving forward along the route.

    ``passed_order`` is the order of the last reported estimate (or of a
    station the bus stopped at). Every update only considers stations
    after it, so consecutive estimates have strictly increasing orders
    and stale or out-of-order fixes cannot name an earlier station. A
    bus within ``arrival_radius_km`` of the candidate is at that stop,
    and the estimate moves on to the one after it.
    """

    def __init__(
        self,
        stations: Sequence[RouteStation],
        *,
        passed_order: int = 0,
        average_speed_kmh: float = AVERAGE_SPEED_KMH,
        arrival_radius_km: float = ARRIVAL_RADIUS_KM,
    ) -> None:
        self._stations = tuple(sorted(stations, key=lambda station: station.order))
        self._passed_order = passed_order
        self._average_speed_kmh = average_speed_kmh
        self._arrival_radius_km = arrival_radius_km
        self._current: NextStationEstimate | None = None

    @property
    def passed_order(self) -> int:
        return self._passed_order

    @property
    def current(self) -> NextStationEstimate | None:
        return self._current

    @property
    def finished(self) -> bool:
        return not any(station.order > self._passed_order for station in self._stations)

    def update(self, fix: PositionFix) -> NextStationEstimate | None:
        """Recompute the estimate for *fix* and return it."""
        estimate = next_station(
            fix,
            self._stations,
            self._passed_order,
            average_speed_kmh=self._average_speed_kmh,
        )
        if estimate is not None and estimate.distance_km <= self._arrival_radius_km:
            _logger.debug("Reached station %s (order %s)", estimate.station_name, estimate.order)
            self._passed_order = estimate.order
            estimate = next_station(
                fix,
                self._stations,
                self._passed_order,
                average_speed_kmh=self._average_speed_kmh,
            )

        if estimate is not None:
            self._passed_order = estimate.order
        self._current = estimate
        return estimate


async def _lookup_station(transport: Transport, entry: RouteEntry) -> RouteStation | None:
    try:
        station = await fetch_station_by_name(transport, entry.station_name)
    except TransitError:
        _logger.warning("Failed to load station %s", entry.station_name, exc_info=True)
        return None
    return RouteStation.join(entry, station)


async def load_route_stations(transport: Transport, trip_id: int) -> list[RouteStation]:
    """Fetch a trip's route and join every stop with its coordinates.

    Stops whose station lookup fails are dropped (they cannot be
    measured against). The result is sorted by ``order``.
    """
    entries = await fetch_route_for_trip(transport, trip_id)
    joined = await asyncio.gather(*(_lookup_station(transport, entry) for entry in entries))
    stations = [station for station in joined if station is not None]
    if len(stations) != len(entries):
        _logger.warning("Trip %s: %d of %d stations lack coordinates", trip_id, len(entries) - len(stations), len(entries))
    return sorted(stations, key=lambda station: station.order)
