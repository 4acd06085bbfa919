"""Station lookup endpoint.

Endpoint:
  - GET /Station/{name}
"""

from __future__ import annotations

from bustrack._api._envelope import get_result, parse_model, path_segment
from bustrack._transport import Transport
from bustrack.exceptions import TransitApiError
from bustrack.models.route import Station


async def fetch_station_by_name(transport: Transport, name: str) -> Station:
    endpoint = f"/Station/{path_segment(name)}"
    result = await get_result(transport, endpoint)
    if not isinstance(result, dict):
        raise TransitApiError(f"{endpoint} returned no station", endpoint=endpoint)
    return parse_model(endpoint, Station, result)
