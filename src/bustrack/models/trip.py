"""Trip session state models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TripState(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TripState.COMPLETED, TripState.CANCELLED)


class TripSession(BaseModel):
    """Driver-side trip state owned by the lifecycle controller."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    trip_id: int
    driver_id: str
    state: TripState = TripState.NOT_STARTED
    started_at: datetime | None = None
    update_counter: int = Field(default=0, ge=0)
    passed_order: int = Field(default=0, ge=0)
