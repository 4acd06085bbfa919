"""Data models for bustrack payloads and state."""

from bustrack.models._base import Timestamp, TransitBaseModel, parse_timestamp
from bustrack.models.notification import Notification
from bustrack.models.position import PositionFix
from bustrack.models.route import NextStationEstimate, RouteEntry, RouteStation, Station
from bustrack.models.schedule import Schedule
from bustrack.models.tracking import BusPosition, DistanceResult, LocationUpdate
from bustrack.models.trip import TripSession, TripState

__all__ = [
    "BusPosition",
    "DistanceResult",
    "LocationUpdate",
    "NextStationEstimate",
    "Notification",
    "PositionFix",
    "RouteEntry",
    "RouteStation",
    "Schedule",
    "Station",
    "Timestamp",
    "TransitBaseModel",
    "TripSession",
    "TripState",
    "parse_timestamp",
]
