"""Driver schedule model."""

from __future__ import annotations

from pydantic import Field

from bustrack.models._base import Timestamp, TransitBaseModel


class Schedule(TransitBaseModel):
    sch_id: int
    trip_id: int
    driver_id: str | None = None
    driver_name: str | None = None
    bus_id: int | None = None
    bus_code: str | None = None
    bus_type: str | None = None
    departure_date_time: Timestamp | None = None
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
