"""Next-station check endpoint.

Endpoint:
  - GET /Tracking/{tripId}/{busLng}/{busLat}

The backend runs a geospatial query and notifies passengers whose
station is next. The call is best-effort: failures are logged here and
never reach the caller.
"""

from __future__ import annotations

import logging

from bustrack._transport import Transport
from bustrack.exceptions import TransitError

_logger = logging.getLogger(__name__)


async def check_next_station(transport: Transport, trip_id: int, bus_lng: float, bus_lat: float) -> bool:
    """Trigger the server-side next-station check.

    Returns ``True`` when the request completed, ``False`` when it failed.
    """
    endpoint = f"/Tracking/{trip_id}/{bus_lng}/{bus_lat}"
    try:
        await transport.get_json(endpoint)
    except TransitError:
        _logger.warning("Next-station check failed for trip %s", trip_id, exc_info=True)
        return False
    _logger.debug("Next-station check completed for trip %s", trip_id)
    return True
