"""Internal constants shared across the library."""

from datetime import timedelta

BASE_URL = "http://localhost:5000/api"
USER_AGENT = "bustrack/1"

EARTH_RADIUS_KM = 6371.0

# Fixed design constant; ignores traffic and road topology.
AVERAGE_SPEED_KMH = 40.0

# Fixes arrive roughly every 5 s, so 12 fixes is about one minute.
NEXT_STATION_CADENCE = 12
POLL_INTERVAL_SECONDS = 5.0
POSITION_TIMEOUT_SECONDS = 5.0

MIN_TRIP_DURATION = timedelta(hours=2)

# A fix this close to a station marks it as reached.
ARRIVAL_RADIUS_KM = 0.05

# ------------------------------------------------------------------
# Real-time hub naming
# ------------------------------------------------------------------

TRACKING_HUB = "trackingHub"
NOTIFICATION_HUB = "notificationHub"
LOCATION_UPDATE_EVENT = "ReceiveLocationUpdate"
NOTIFICATION_EVENT = "ReceiveNotification"

# ------------------------------------------------------------------
# Persisted trip-session keys
# ------------------------------------------------------------------

ACTIVE_TRIP_KEY = "activeTripId"
TRIP_START_KEY = "tripStartTime"
NEXT_STATION_ORDER_KEY = "nextStationOrder"


def location_event(trip_id: int) -> str:
    """Hub event name carrying location updates for *trip_id*."""
    return f"{LOCATION_UPDATE_EVENT}/{trip_id}"


def notification_hub(user_id: str) -> str:
    """Hub path for the per-user notification stream."""
    return f"{NOTIFICATION_HUB}/{user_id}"
