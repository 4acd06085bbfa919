"""Custom exception hierarchy for bustrack."""

from __future__ import annotations

import enum
from datetime import timedelta


class TransitError(Exception):
    """Base exception for all bustrack errors."""


class TransitConfigError(TransitError):
    """Invalid or missing configuration."""


class TransitTransportError(TransitError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TransitAuthenticationError(TransitTransportError):
    """The backend rejected the access token (HTTP 401/403).

    Token refresh belongs to the caller's auth layer; the client only
    reports the rejection.
    """


class TransitApiError(TransitError):
    """API envelope came back with ``isSuccess: false``."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
        api_message: str = "",
    ) -> None:
        self.endpoint = endpoint
        self.api_message = api_message
        super().__init__(message)


class HubError(TransitError):
    """Real-time hub failure that must be surfaced to the caller."""


class GeolocationErrorCode(enum.IntEnum):
    """Platform geolocation failure codes (W3C numbering)."""

    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class GeolocationError(TransitError):
    """A position request failed.

    Only :attr:`GeolocationErrorCode.PERMISSION_DENIED` is fatal to
    sampling; the other codes are retried by the next watch/poll cycle.
    """

    def __init__(self, code: GeolocationErrorCode, message: str = "") -> None:
        self.code = code
        super().__init__(message or code.name.replace("_", " ").lower())

    @property
    def is_fatal(self) -> bool:
        return self.code == GeolocationErrorCode.PERMISSION_DENIED


class TripStateError(TransitError):
    """A trip action was rejected (bad transition, no schedule, no driver)."""


class TripGuardError(TripStateError):
    """Ending the trip was attempted before the minimum duration elapsed."""

    def __init__(self, message: str, *, remaining: timedelta) -> None:
        self.remaining = remaining
        super().__init__(message)
