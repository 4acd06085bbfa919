"""Driver trip lifecycle.

States: ``not_started -> in_progress -> {completed, cancelled}``.

* Start reports the transition to the backend, records the start time,
  persists the session and starts sampling/broadcasting.
* Cancel is allowed at any time while in progress.
* End is guarded: it is rejected with :class:`TripGuardError` until the
  minimum trip duration (two hours) has elapsed, boundary inclusive.

Every transition calls the backend first and only mutates local state
once it succeeded, so a rejected action leaves the session untouched.
Stopping the tracking side effects is idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol

from bustrack._api.driver import TripAction
from bustrack._constants import (
    ACTIVE_TRIP_KEY,
    ARRIVAL_RADIUS_KM,
    AVERAGE_SPEED_KMH,
    MIN_TRIP_DURATION,
    NEXT_STATION_CADENCE,
    NEXT_STATION_ORDER_KEY,
    TRIP_START_KEY,
)
from bustrack.broadcaster import EstimateCallback, PositionBroadcaster
from bustrack.exceptions import GeolocationError, TransitError, TripGuardError, TripStateError
from bustrack.geolocation import GeolocationSampler
from bustrack.models.position import PositionFix
from bustrack.models.route import NextStationEstimate, RouteStation
from bustrack.models.tracking import LocationUpdate
from bustrack.models.trip import TripSession, TripState
from bustrack.realtime import RealtimeChannel, Subscription
from bustrack.route import NextStationTracker
from bustrack.storage import MemorySessionStore, SessionStore

_logger = logging.getLogger(__name__)

_DRIVER_SUBSCRIBER = "driver"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def format_duration(value: timedelta) -> str:
    """Format a duration as ``H:MM`` (negative durations clamp to zero)."""
    total_minutes = max(int(value.total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}:{minutes:02d}"


class TripApi(Protocol):
    """Backend calls the controller depends on."""

    async def update_trip_status(self, driver_id: str, action: TripAction) -> None:
        ...

    async def check_next_station(self, trip_id: int, bus_lng: float, bus_lat: float) -> bool:
        ...


class TripLifecycleController:
    """Drives one driver trip and the tracking machinery tied to it."""

    def __init__(
        self,
        *,
        api: TripApi,
        channel: RealtimeChannel,
        sampler: GeolocationSampler,
        driver_id: str,
        trip_id: int,
        store: SessionStore | None = None,
        route_stations: Sequence[RouteStation] = (),
        clock: Callable[[], datetime] = _utcnow,
        min_duration: timedelta = MIN_TRIP_DURATION,
        cadence: int = NEXT_STATION_CADENCE,
        average_speed_kmh: float = AVERAGE_SPEED_KMH,
        arrival_radius_km: float = ARRIVAL_RADIUS_KM,
        on_estimate: EstimateCallback | None = None,
    ) -> None:
        if not driver_id or not driver_id.strip():
            raise TripStateError("Driver identity is required to run a trip")
        self._api = api
        self._channel = channel
        self._sampler = sampler
        self._store = store if store is not None else MemorySessionStore()
        self._route_stations = tuple(route_stations)
        self._clock = clock
        self._min_duration = min_duration
        self._cadence = cadence
        self._average_speed_kmh = average_speed_kmh
        self._arrival_radius_km = arrival_radius_km
        self._on_estimate = on_estimate
        self._session = TripSession(trip_id=trip_id, driver_id=driver_id.strip())
        self._broadcaster: PositionBroadcaster | None = None
        self._subscription: Subscription | None = None
        self._estimate: NextStationEstimate | None = None
        self._tracking_error: TransitError | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session(self) -> TripSession:
        return self._session

    @property
    def state(self) -> TripState:
        return self._session.state

    @property
    def route_stations(self) -> tuple[RouteStation, ...]:
        return self._route_stations

    @property
    def estimate(self) -> NextStationEstimate | None:
        """Latest local next-station estimate."""
        return self._estimate

    @property
    def last_fix(self) -> PositionFix | None:
        return self._broadcaster.last_fix if self._broadcaster is not None else None

    @property
    def is_tracking(self) -> bool:
        return self._sampler.is_running

    @property
    def geolocation_error(self) -> GeolocationError | None:
        return self._sampler.error

    @property
    def tracking_error(self) -> TransitError | None:
        return self._tracking_error

    def elapsed(self) -> timedelta:
        started_at = self._session.started_at
        if started_at is None:
            return timedelta(0)
        return self._clock() - started_at

    def remaining_guard_time(self) -> timedelta:
        """Time left before the trip may be ended (zero once allowed)."""
        if self._session.started_at is None:
            return self._min_duration
        return max(self._min_duration - self.elapsed(), timedelta(0))

    def can_end(self) -> bool:
        return (
            self._session.state == TripState.IN_PROGRESS
            and self._session.started_at is not None
            and self.remaining_guard_time() == timedelta(0)
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_state(self, expected: TripState, action: str) -> None:
        state = self._session.state
        if state == expected:
            return
        if state.is_terminal:
            raise TripStateError(f"Cannot {action} a trip that is already {state.value}; start a new session")
        raise TripStateError(f"Cannot {action} a trip that is {state.value}")

    async def resume(self) -> bool:
        """Restore an in-progress trip persisted before a reload.

        Returns ``True`` when the persisted session belongs to this trip
        and tracking was restarted.
        """
        if self._session.state != TripState.NOT_STARTED:
            return False
        if self._store.get(ACTIVE_TRIP_KEY) != str(self._session.trip_id):
            return False

        started_at = self._load_start_time()
        passed_raw = self._store.get(NEXT_STATION_ORDER_KEY)
        passed_order = int(passed_raw) if passed_raw and passed_raw.isdigit() else 0

        self._session.started_at = started_at
        self._session.passed_order = passed_order
        self._session.update_counter = 0
        self._session.state = TripState.IN_PROGRESS
        _logger.info("Resumed trip %s started at %s", self._session.trip_id, started_at.isoformat())
        await self._start_tracking()
        return True

    def _load_start_time(self) -> datetime:
        raw = self._store.get(TRIP_START_KEY)
        if raw:
            try:
                parsed = datetime.fromisoformat(raw)
            except ValueError:
                _logger.warning("Ignoring unparseable trip start time %r", raw)
            else:
                return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
        now = self._clock()
        self._store.set(TRIP_START_KEY, now.isoformat())
        return now

    async def start(self) -> None:
        """``not_started -> in_progress``."""
        self._require_state(TripState.NOT_STARTED, "start")
        await self._api.update_trip_status(self._session.driver_id, TripAction.START)

        now = self._clock()
        self._session.started_at = now
        self._session.update_counter = 0
        self._session.passed_order = 0
        self._session.state = TripState.IN_PROGRESS
        self._store.set(ACTIVE_TRIP_KEY, str(self._session.trip_id))
        self._store.set(TRIP_START_KEY, now.isoformat())
        self._store.remove(NEXT_STATION_ORDER_KEY)
        _logger.info("Trip %s started", self._session.trip_id)
        await self._start_tracking()

    async def cancel(self) -> None:
        """``in_progress -> cancelled``; allowed at any time while in progress."""
        self._require_state(TripState.IN_PROGRESS, "cancel")
        await self._api.update_trip_status(self._session.driver_id, TripAction.CANCEL)
        self._session.state = TripState.CANCELLED
        _logger.info("Trip %s cancelled", self._session.trip_id)
        await self._finish()

    async def end(self) -> None:
        """``in_progress -> completed`` once the minimum duration elapsed."""
        self._require_state(TripState.IN_PROGRESS, "end")
        remaining = self.remaining_guard_time()
        if remaining > timedelta(0):
            raise TripGuardError(
                f"Trip cannot be ended before {format_duration(self._min_duration)} of start time "
                f"({format_duration(remaining)} remaining)",
                remaining=remaining,
            )
        await self._api.update_trip_status(self._session.driver_id, TripAction.END)
        self._session.state = TripState.COMPLETED
        _logger.info("Trip %s completed", self._session.trip_id)
        await self._finish()

    async def close(self) -> None:
        """Stop tracking without changing state (e.g. the view is closed).

        The persisted session is kept so :meth:`resume` can pick it up.
        """
        await self._stop_tracking()

    async def _finish(self) -> None:
        await self._stop_tracking()
        for key in (ACTIVE_TRIP_KEY, TRIP_START_KEY, NEXT_STATION_ORDER_KEY):
            self._store.remove(key)

    # ------------------------------------------------------------------
    # Tracking side effects
    # ------------------------------------------------------------------

    async def _start_tracking(self) -> None:
        tracker: NextStationTracker | None = None
        if self._route_stations:
            tracker = NextStationTracker(
                self._route_stations,
                passed_order=self._session.passed_order,
                average_speed_kmh=self._average_speed_kmh,
                arrival_radius_km=self._arrival_radius_km,
            )
        self._broadcaster = PositionBroadcaster(
            channel=self._channel,
            session=self._session,
            check_next_station=self._api.check_next_station,
            cadence=self._cadence,
            tracker=tracker,
            on_estimate=self._handle_estimate,
        )
        self._tracking_error = None
        try:
            self._subscription = await self._channel.connect_tracking(
                self._session.trip_id,
                self._on_echo,
                subscriber=_DRIVER_SUBSCRIBER,
            )
        except TransitError as exc:
            _logger.warning("Tracking hub unavailable for trip %s", self._session.trip_id, exc_info=True)
            self._tracking_error = exc
        self._sampler.start(self._broadcaster.on_fix)

    async def _stop_tracking(self) -> None:
        self._sampler.stop()
        if self._broadcaster is not None:
            self._broadcaster.cancel_pending()
        self._session.update_counter = 0
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            await subscription.cancel()

    def _on_echo(self, update: LocationUpdate) -> None:
        _logger.debug("Hub echoed fix for trip %s from %s", update.trip_id, update.driver_id)

    def _handle_estimate(self, estimate: NextStationEstimate | None) -> None:
        self._estimate = estimate
        self._store.set(NEXT_STATION_ORDER_KEY, str(self._session.passed_order))
        if self._on_estimate is not None:
            self._on_estimate(estimate)
