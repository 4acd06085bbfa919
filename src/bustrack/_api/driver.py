"""Driver trip-status endpoint.

Endpoint:
  - PUT /Driver/{driverId}/{Start|Cancel|End}
"""

from __future__ import annotations

import logging
from enum import StrEnum

from bustrack._api._envelope import path_segment, put_result
from bustrack._transport import Transport

_logger = logging.getLogger(__name__)


class TripAction(StrEnum):
    START = "Start"
    CANCEL = "Cancel"
    END = "End"


async def update_trip_status(transport: Transport, driver_id: str, action: TripAction) -> None:
    """Report a trip transition; raises :class:`TransitApiError` on rejection."""
    endpoint = f"/Driver/{path_segment(driver_id)}/{action.value}"
    await put_result(transport, endpoint)
    _logger.debug("Trip status %s accepted for driver", action.value)
