"""Driver-side position broadcaster.

Every fix is published on the trip topic. Every ``cadence``-th fix also
fires the server-side next-station check (an expensive geospatial query,
so roughly once a minute at the usual 5 s fix rate) and refreshes the
local next-station estimate. The check is fire-and-forget: its outcome
never blocks or aborts broadcasting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from bustrack._constants import NEXT_STATION_CADENCE
from bustrack.exceptions import TransitError
from bustrack.models.position import PositionFix
from bustrack.models.route import NextStationEstimate
from bustrack.models.tracking import LocationUpdate
from bustrack.models.trip import TripSession
from bustrack.realtime import RealtimeChannel
from bustrack.route import NextStationTracker

_logger = logging.getLogger(__name__)

NextStationCheck = Callable[[int, float, float], Awaitable[object]]
"""``(trip_id, bus_lng, bus_lat)`` -> awaitable; result is ignored."""

EstimateCallback = Callable[[NextStationEstimate | None], None]


class PositionBroadcaster:
    """Publishes fixes and drives the next-station cadence for a trip."""

    def __init__(
        self,
        *,
        channel: RealtimeChannel,
        session: TripSession,
        check_next_station: NextStationCheck,
        cadence: int = NEXT_STATION_CADENCE,
        tracker: NextStationTracker | None = None,
        on_estimate: EstimateCallback | None = None,
    ) -> None:
        if cadence < 1:
            raise ValueError("cadence must be at least 1")
        self._channel = channel
        self._session = session
        self._check_next_station = check_next_station
        self._cadence = cadence
        self._tracker = tracker
        self._on_estimate = on_estimate
        self._pending: set[asyncio.Task[None]] = set()
        self._last_fix: PositionFix | None = None

    @property
    def last_fix(self) -> PositionFix | None:
        return self._last_fix

    @property
    def pending_checks(self) -> int:
        return len(self._pending)

    async def on_fix(self, fix: PositionFix) -> None:
        """Publish *fix* and advance the next-station cadence."""
        self._last_fix = fix
        update = LocationUpdate.from_fix(self._session.trip_id, self._session.driver_id, fix)
        try:
            await self._channel.publish_location(update)
        except TransitError:
            _logger.warning("Location publish failed for trip %s", self._session.trip_id, exc_info=True)

        self._session.update_counter += 1
        if self._session.update_counter >= self._cadence:
            self._session.update_counter = 0
            self._schedule_check(fix)
            self._refresh_estimate(fix)

    def _schedule_check(self, fix: PositionFix) -> None:
        task = asyncio.get_running_loop().create_task(self._run_check(fix))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_check(self, fix: PositionFix) -> None:
        trip_id = self._session.trip_id
        try:
            await self._check_next_station(trip_id, fix.longitude, fix.latitude)
        except Exception:
            _logger.warning("Next-station check failed for trip %s", trip_id, exc_info=True)

    def _refresh_estimate(self, fix: PositionFix) -> None:
        if self._tracker is None:
            return
        estimate = self._tracker.update(fix)
        self._session.passed_order = self._tracker.passed_order
        if self._on_estimate is not None:
            self._on_estimate(estimate)

    async def flush(self) -> None:
        """Wait for in-flight next-station checks to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()
