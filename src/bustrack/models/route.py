"""Route, station and next-station models."""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator

from bustrack.models._base import TransitBaseModel, safe_float


class RouteEntry(TransitBaseModel):
    """One row of ``/Route/RouteForTrip`` (no coordinates)."""

    trip_id: int | None = None
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
    station_id: int
    station_name: str
    order: int


class Station(TransitBaseModel):
    """A station as returned by ``/Station/{name}``."""

    id: int = Field(validation_alias=AliasChoices("id", "stationId"))
    name: str
    area: str | None = None
    location: str | None = None
    latitude: float
    longitude: float

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_floats(cls, value: object) -> object:
        parsed = safe_float(value)
        return value if parsed is None else parsed


class RouteStation(TransitBaseModel):
    """A route stop joined with its station coordinates.

    ``order`` is 1-based and monotonic along the path: a lower order
    is visited earlier.
    """

    order: int = Field(ge=1)
    station_id: int
    name: str
    latitude: float
    longitude: float

    @classmethod
    def join(cls, entry: RouteEntry, station: Station) -> RouteStation:
        return cls(
            order=entry.order,
            station_id=entry.station_id,
            name=entry.station_name,
            latitude=station.latitude,
            longitude=station.longitude,
        )


class NextStationEstimate(TransitBaseModel):
    """Nearest station ahead of the bus with a straight-line ETA."""

    station_name: str
    distance_km: float
    eta_minutes: int
    order: int
