"""bustrack - Async Python client for live bus trip tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bustrack")
except PackageNotFoundError:
    __version__ = "0+local"
from bustrack.broadcaster import PositionBroadcaster
from bustrack.client import TransitClient
from bustrack.config import TransitConfig
from bustrack.consumer import BusPositionConsumer, BusTracking
from bustrack.exceptions import (
    GeolocationError,
    GeolocationErrorCode,
    HubError,
    TransitApiError,
    TransitAuthenticationError,
    TransitConfigError,
    TransitError,
    TransitTransportError,
    TripGuardError,
    TripStateError,
)
from bustrack.geolocation import GeolocationSampler, PositionOptions, PositionSource, ReplayPositionSource
from bustrack.models import (
    BusPosition,
    DistanceResult,
    LocationUpdate,
    NextStationEstimate,
    Notification,
    PositionFix,
    RouteEntry,
    RouteStation,
    Schedule,
    Station,
    TripSession,
    TripState,
)
from bustrack.realtime import ConnectionState, HubConnection, RealtimeChannel, Subscription
from bustrack.route import NextStationTracker, haversine_km, next_station
from bustrack.storage import JsonFileSessionStore, MemorySessionStore, SessionStore
from bustrack.trip import TripLifecycleController

__all__ = [
    "__version__",
    "BusPosition",
    "BusPositionConsumer",
    "BusTracking",
    "ConnectionState",
    "DistanceResult",
    "GeolocationError",
    "GeolocationErrorCode",
    "GeolocationSampler",
    "HubConnection",
    "HubError",
    "JsonFileSessionStore",
    "LocationUpdate",
    "MemorySessionStore",
    "NextStationEstimate",
    "NextStationTracker",
    "Notification",
    "PositionBroadcaster",
    "PositionFix",
    "PositionOptions",
    "PositionSource",
    "RealtimeChannel",
    "ReplayPositionSource",
    "RouteEntry",
    "RouteStation",
    "Schedule",
    "SessionStore",
    "Station",
    "Subscription",
    "TransitApiError",
    "TransitAuthenticationError",
    "TransitClient",
    "TransitConfig",
    "TransitConfigError",
    "TransitError",
    "TransitTransportError",
    "TripGuardError",
    "TripLifecycleController",
    "TripSession",
    "TripState",
    "TripStateError",
    "haversine_km",
    "next_station",
]
