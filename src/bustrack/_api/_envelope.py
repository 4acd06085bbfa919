"""Helpers for the ``{isSuccess, message, result}`` response envelope.

Every REST resource except the distance calculator wraps its payload
in this envelope. It is internal to bustrack and may change at any time.
"""

from __future__ import annotations

from typing import Any, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from bustrack._transport import Transport
from bustrack.exceptions import TransitApiError

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def path_segment(value: Any) -> str:
    """URL-encode a single path segment (station names contain spaces)."""
    return quote(str(value), safe="")


def parse_model(endpoint: str, model: type[_ModelT], data: Any) -> _ModelT:
    """Validate *data* as *model*, reporting malformed payloads as :class:`TransitApiError`."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise TransitApiError(
            f"{endpoint} returned a malformed {model.__name__}: {exc.error_count()} invalid field(s)",
            endpoint=endpoint,
        ) from exc


def unwrap_envelope(endpoint: str, response: Any) -> Any:
    """Return ``result`` from a successful envelope or raise :class:`TransitApiError`."""
    if not isinstance(response, dict):
        raise TransitApiError(
            f"{endpoint} returned a non-object response",
            endpoint=endpoint,
        )
    if not response.get("isSuccess", False):
        message = str(response.get("message") or "")
        raise TransitApiError(
            f"{endpoint} failed: {message or 'isSuccess=false'}",
            endpoint=endpoint,
            api_message=message,
        )
    return response.get("result")


async def get_result(transport: Transport, endpoint: str) -> Any:
    response = await transport.get_json(endpoint)
    return unwrap_envelope(endpoint, response)


async def put_result(transport: Transport, endpoint: str) -> Any:
    response = await transport.put_json(endpoint)
    return unwrap_envelope(endpoint, response)
