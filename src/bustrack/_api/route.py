"""Route endpoints.

Endpoints:
  - GET /Route/RouteForTrip/{tripId}
  - GET /Route/TheNearestStationAtRoute/{tripId}/{lng}/{lat}
  - GET /Route/CalcDistanceToDistnation/{userLng}/{userLat}/{otherLng}/{otherLat}
"""

from __future__ import annotations

from bustrack._api._envelope import get_result, parse_model
from bustrack._transport import Transport
from bustrack.exceptions import TransitApiError
from bustrack.models.route import RouteEntry, Station
from bustrack.models.tracking import DistanceResult


async def fetch_route_for_trip(transport: Transport, trip_id: int) -> list[RouteEntry]:
    """Fetch the trip's route, sorted by ``order``."""
    endpoint = f"/Route/RouteForTrip/{trip_id}"
    result = await get_result(transport, endpoint)
    items = result if isinstance(result, list) else []
    entries = [parse_model(endpoint, RouteEntry, item) for item in items]
    return sorted(entries, key=lambda entry: entry.order)


async def fetch_nearest_station_at_route(
    transport: Transport,
    trip_id: int,
    longitude: float,
    latitude: float,
) -> Station | None:
    endpoint = f"/Route/TheNearestStationAtRoute/{trip_id}/{longitude}/{latitude}"
    result = await get_result(transport, endpoint)
    if not isinstance(result, dict):
        return None
    return parse_model(endpoint, Station, result)


async def calculate_distance(
    transport: Transport,
    user_lng: float,
    user_lat: float,
    other_lng: float,
    other_lat: float,
) -> DistanceResult:
    """Road distance/duration between two points (not enveloped)."""
    endpoint = f"/Route/CalcDistanceToDistnation/{user_lng}/{user_lat}/{other_lng}/{other_lat}"
    response = await transport.get_json(endpoint)
    if not isinstance(response, dict):
        raise TransitApiError(f"{endpoint} returned a non-object response", endpoint=endpoint)
    return parse_model(endpoint, DistanceResult, response)
