"""Driver schedule endpoints.

Endpoints:
  - GET /Schedule/CurrentByDriverId/{driverId}
  - GET /Schedule/ByDriverId/{driverId}
"""

from __future__ import annotations

from bustrack._api._envelope import get_result, parse_model, path_segment
from bustrack._transport import Transport
from bustrack.models.schedule import Schedule


async def fetch_current_schedule(transport: Transport, driver_id: str) -> Schedule | None:
    endpoint = f"/Schedule/CurrentByDriverId/{path_segment(driver_id)}"
    result = await get_result(transport, endpoint)
    if not isinstance(result, dict):
        return None
    return parse_model(endpoint, Schedule, result)


async def fetch_driver_schedules(transport: Transport, driver_id: str) -> list[Schedule]:
    endpoint = f"/Schedule/ByDriverId/{path_segment(driver_id)}"
    result = await get_result(transport, endpoint)
    items = result if isinstance(result, list) else []
    return [parse_model(endpoint, Schedule, item) for item in items]
