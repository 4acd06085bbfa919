"""User notification model."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from bustrack.models._base import Timestamp, TransitBaseModel


class Notification(TransitBaseModel):
    """A notification pushed on the per-user hub or stored server-side."""

    id: int = Field(validation_alias=AliasChoices("notifid", "id", "notifId"))
    message: str = Field(validation_alias=AliasChoices("msg", "message"))
    date: Timestamp | None = None
    user_id: str | None = None
    is_read: bool = False
