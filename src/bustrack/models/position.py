"""Position fix model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from bustrack.models._base import Timestamp, TransitBaseModel, utcnow


class PositionFix(TransitBaseModel):
    """A single timestamped GPS reading.

    Accepts the flat ``{lat, lng, timestamp}`` shape as well as the
    platform geolocation shape ``{"coords": {...}, "timestamp": ms}``.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    captured_at : datetime
        When the platform produced the reading (UTC).
    """

    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng", "lon"))
    captured_at: Timestamp = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("capturedAt", "captured_at", "timestamp"),
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_coords(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        coords = values.get("coords")
        if not isinstance(coords, dict):
            return values
        merged = {key: value for key, value in values.items() if key != "coords"}
        merged.update(coords)
        return merged

    @field_validator("latitude")
    @classmethod
    def _check_latitude(cls, value: float) -> float:
        if not -90.0 <= value <= 90.0:
            raise ValueError(f"latitude out of range: {value}")
        return value

    @field_validator("longitude")
    @classmethod
    def _check_longitude(cls, value: float) -> float:
        if not -180.0 <= value <= 180.0:
            raise ValueError(f"longitude out of range: {value}")
        return value

    @classmethod
    def at(cls, latitude: float, longitude: float, captured_at: datetime | None = None) -> PositionFix:
        """Build a fix from plain coordinates."""
        if captured_at is None:
            return cls(latitude=latitude, longitude=longitude)
        return cls(latitude=latitude, longitude=longitude, captured_at=captured_at)
