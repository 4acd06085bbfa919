"""Client configuration for bustrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from bustrack._constants import (
    ARRIVAL_RADIUS_KM,
    AVERAGE_SPEED_KMH,
    BASE_URL,
    MIN_TRIP_DURATION,
    NEXT_STATION_CADENCE,
    POLL_INTERVAL_SECONDS,
    POSITION_TIMEOUT_SECONDS,
)
from bustrack.exceptions import TransitConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class TransitConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        REST API base URL (without trailing slash).
    access_token : str or None
        Bearer token issued by the auth service. Refreshing it is the
        caller's responsibility.
    request_timeout : float
        Total timeout in seconds for a single REST call.
    hub_host : str
        Real-time hub (MQTT broker) host name.
    hub_port : int
        Real-time hub port.
    hub_tls : bool
        Wrap the hub connection in TLS.
    hub_username : str
        MQTT user name sent alongside the access token.
    hub_keepalive : int
        MQTT keepalive in seconds.
    hub_topic_prefix : str
        Prefix prepended to every hub topic.
    hub_reconnect_min_delay : int
        Initial reconnect backoff in seconds after a dropped connection.
    hub_reconnect_max_delay : int
        Upper bound of the exponential reconnect backoff.
    poll_interval : float
        Seconds between fallback position polls.
    position_timeout : float
        Seconds a single position request may take.
    next_station_cadence : int
        Number of fixes between two next-station checks.
    average_speed_kmh : float
        Assumed bus speed for ETA estimates.
    arrival_radius_km : float
        Distance under which a station counts as reached.
    min_trip_duration : float
        Seconds a trip must run before it may be ended.
    session_path : str or None
        JSON file holding the persisted trip session. ``None`` keeps the
        session in memory only.
    """

    base_url: str = BASE_URL
    access_token: str | None = None
    request_timeout: float = 30.0
    hub_host: str = "localhost"
    hub_port: int = 1883
    hub_tls: bool = False
    hub_username: str = "bearer"
    hub_keepalive: int = 60
    hub_topic_prefix: str = "bustrack"
    hub_reconnect_min_delay: int = 1
    hub_reconnect_max_delay: int = 60
    poll_interval: float = POLL_INTERVAL_SECONDS
    position_timeout: float = POSITION_TIMEOUT_SECONDS
    next_station_cadence: int = NEXT_STATION_CADENCE
    average_speed_kmh: float = AVERAGE_SPEED_KMH
    arrival_radius_km: float = ARRIVAL_RADIUS_KM
    min_trip_duration: float = MIN_TRIP_DURATION.total_seconds()
    session_path: str | None = None

    def __post_init__(self) -> None:
        if self.next_station_cadence < 1:
            raise TransitConfigError("next_station_cadence must be at least 1")
        if self.poll_interval <= 0:
            raise TransitConfigError("poll_interval must be positive")
        if self.average_speed_kmh <= 0:
            raise TransitConfigError("average_speed_kmh must be positive")
        if self.hub_reconnect_min_delay > self.hub_reconnect_max_delay:
            raise TransitConfigError("hub_reconnect_min_delay exceeds hub_reconnect_max_delay")

    @classmethod
    def from_env(cls, **overrides: Any) -> TransitConfig:
        """Create configuration from environment variables.

        Reads ``TRANSIT_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TransitConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "TRANSIT_BASE_URL": "base_url",
            "TRANSIT_ACCESS_TOKEN": "access_token",
            "TRANSIT_HUB_HOST": "hub_host",
            "TRANSIT_HUB_USERNAME": "hub_username",
            "TRANSIT_HUB_TOPIC_PREFIX": "hub_topic_prefix",
            "TRANSIT_SESSION_PATH": "session_path",
        }
        _ENV_INT_MAP = {
            "TRANSIT_HUB_PORT": "hub_port",
            "TRANSIT_HUB_KEEPALIVE": "hub_keepalive",
            "TRANSIT_HUB_RECONNECT_MIN_DELAY": "hub_reconnect_min_delay",
            "TRANSIT_HUB_RECONNECT_MAX_DELAY": "hub_reconnect_max_delay",
            "TRANSIT_NEXT_STATION_CADENCE": "next_station_cadence",
        }
        _ENV_FLOAT_MAP = {
            "TRANSIT_REQUEST_TIMEOUT": "request_timeout",
            "TRANSIT_POLL_INTERVAL": "poll_interval",
            "TRANSIT_POSITION_TIMEOUT": "position_timeout",
            "TRANSIT_AVERAGE_SPEED_KMH": "average_speed_kmh",
            "TRANSIT_ARRIVAL_RADIUS_KM": "arrival_radius_km",
            "TRANSIT_MIN_TRIP_DURATION": "min_trip_duration",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise TransitConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "hub_tls" not in overrides:
            config_kwargs["hub_tls"] = _env_bool(env.get("TRANSIT_HUB_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
