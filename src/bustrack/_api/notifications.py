"""Stored notifications endpoint.

Endpoint:
  - GET /Notification/{userId}
"""

from __future__ import annotations

from bustrack._api._envelope import get_result, parse_model, path_segment
from bustrack._transport import Transport
from bustrack.models.notification import Notification


async def fetch_notifications(transport: Transport, user_id: str) -> list[Notification]:
    endpoint = f"/Notification/{path_segment(user_id)}"
    result = await get_result(transport, endpoint)
    items = result if isinstance(result, list) else []
    return [parse_model(endpoint, Notification, item) for item in items]
