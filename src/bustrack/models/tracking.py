"""Live tracking payload models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, model_validator

from bustrack.models._base import Timestamp, TransitBaseModel, utcnow
from bustrack.models.position import PositionFix


class LocationUpdate(TransitBaseModel):
    """Wire payload of a fix published on a trip topic.

    Tagged with the publishing driver's identity.
    """

    trip_id: int
    driver_id: str = Field(validation_alias=AliasChoices("driverId", "busId", "driver_id"))
    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng", "lon"))
    captured_at: Timestamp = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _stringify_driver(cls, values: Any) -> Any:
        # Older hubs send a numeric busId.
        if isinstance(values, dict):
            for key in ("driverId", "busId"):
                if isinstance(values.get(key), int):
                    values = {**values, key: str(values[key])}
        return values

    @classmethod
    def from_fix(cls, trip_id: int, driver_id: str, fix: PositionFix) -> LocationUpdate:
        return cls(
            trip_id=trip_id,
            driver_id=driver_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            captured_at=fix.captured_at,
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_fix(self) -> PositionFix:
        return PositionFix.at(self.latitude, self.longitude, self.captured_at)


class DistanceResult(TransitBaseModel):
    """Result of the route distance/duration endpoint."""

    distance_km: float = Field(validation_alias=AliasChoices("distance", "distanceKm"))
    duration_minutes: float = Field(validation_alias=AliasChoices("duration", "durationMinutes"))


class BusPosition(TransitBaseModel):
    """Passenger-side view of the bus relative to the origin station.

    ``distance_km``/``eta_minutes`` are ``None`` when the distance
    lookup failed for this fix.
    """

    trip_id: int
    bus_lat: float
    bus_lng: float
    distance_km: float | None = None
    eta_minutes: float | None = None
    captured_at: Timestamp = Field(default_factory=utcnow)
