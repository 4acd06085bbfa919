"""Geolocation sampling.

:class:`GeolocationSampler` runs two independent producers against a
:class:`PositionSource`:

* a continuous watch that fires on every reported movement, and
* a fixed-interval poll that covers the gaps when the watch is silent.

Both feed one queue drained in order by a single consumer task, so the
fix handler never runs concurrently with itself. Near-simultaneous
duplicate fixes are expected and harmless downstream.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError

from bustrack._constants import POLL_INTERVAL_SECONDS, POSITION_TIMEOUT_SECONDS
from bustrack.exceptions import GeolocationError, GeolocationErrorCode
from bustrack.models.position import PositionFix
from bustrack.models.route import RouteStation

_logger = logging.getLogger(__name__)

RawPosition = Mapping[str, Any]
FixCallback = Callable[[PositionFix], Awaitable[None] | None]
ErrorCallback = Callable[[GeolocationError], None]


@dataclass(frozen=True)
class PositionOptions:
    """Options forwarded to the platform position source."""

    enable_high_accuracy: bool = True
    timeout: float = POSITION_TIMEOUT_SECONDS
    maximum_age: float = 0.0


class WatchHandle(Protocol):
    def cancel(self) -> None:
        ...


class PositionSource(Protocol):
    """Platform geolocation capability.

    Callbacks must be invoked on the event loop thread.
    """

    def watch_position(
        self,
        on_position: Callable[[RawPosition], None],
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> WatchHandle:
        ...

    async def current_position(self, options: PositionOptions) -> RawPosition:
        ...


class GeolocationSampler:
    """Dual-cadence position sampler (watch + fallback poll)."""

    def __init__(
        self,
        source: PositionSource,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        options: PositionOptions | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._source = source
        self._poll_interval = poll_interval
        self._options = options or PositionOptions()
        self._on_error = on_error
        self._watch: WatchHandle | None = None
        self._poller: asyncio.Task[None] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[PositionFix] | None = None
        self._error: GeolocationError | None = None

    @property
    def is_running(self) -> bool:
        return self._queue is not None

    @property
    def error(self) -> GeolocationError | None:
        """The fatal error that halted sampling, if any."""
        return self._error

    def start(self, on_fix: FixCallback) -> None:
        """Start both producers; must be called from the running loop."""
        self.stop()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[PositionFix] = asyncio.Queue()
        self._queue = queue
        self._error = None
        self._consumer = loop.create_task(self._consume(queue, on_fix))
        self._poller = loop.create_task(self._poll())
        self._watch = self._source.watch_position(self._accept, self._handle_error, self._options)
        _logger.debug("Geolocation sampling started (poll every %.1fs)", self._poll_interval)

    def stop(self) -> None:
        """Cancel the watch, the poll timer and the consumer. Idempotent."""
        watch, poller, consumer = self._watch, self._poller, self._consumer
        was_running = self._queue is not None
        self._watch = None
        self._poller = None
        self._consumer = None
        self._queue = None
        if watch is not None:
            watch.cancel()
        for task in (poller, consumer):
            if task is not None and not task.done():
                task.cancel()
        if was_running:
            _logger.debug("Geolocation sampling stopped")

    def _accept(self, raw: RawPosition) -> None:
        queue = self._queue
        if queue is None:
            return
        try:
            fix = PositionFix.model_validate(dict(raw))
        except ValidationError:
            _logger.warning("Discarding malformed position: %s", raw)
            return
        queue.put_nowait(fix)

    def _handle_error(self, error: GeolocationError) -> None:
        if error.is_fatal:
            _logger.error("Geolocation permission denied; sampling halted")
            self._error = error
            self.stop()
            if self._on_error is not None:
                self._on_error(error)
            return
        if error.code == GeolocationErrorCode.POSITION_UNAVAILABLE:
            _logger.warning("Position unavailable: %s", error)
        else:
            _logger.debug("Position request timed out, retrying next cycle")

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                raw = await asyncio.wait_for(self._source.current_position(self._options), self._options.timeout)
            except TimeoutError:
                self._handle_error(GeolocationError(GeolocationErrorCode.TIMEOUT))
                continue
            except GeolocationError as exc:
                self._handle_error(exc)
                if exc.is_fatal:
                    return
                continue
            except Exception:
                _logger.warning("Position unavailable: position source failed", exc_info=True)
                continue
            self._accept(raw)

    async def _consume(self, queue: asyncio.Queue[PositionFix], on_fix: FixCallback) -> None:
        while True:
            fix = await queue.get()
            try:
                result = on_fix(fix)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.warning("Fix handler failed", exc_info=True)


class _ReplayWatch:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()


class ReplayPositionSource:
    """Position source that replays a fixed list of coordinates.

    The watch emits one point per ``interval`` and goes silent once the
    list is exhausted (unless ``repeat`` is set). ``current_position``
    returns the most recently replayed point.
    """

    def __init__(
        self,
        points: Sequence[tuple[float, float]],
        *,
        interval: float = POLL_INTERVAL_SECONDS,
        repeat: bool = False,
    ) -> None:
        if not points:
            raise ValueError("ReplayPositionSource needs at least one point")
        self._points = list(points)
        self._interval = interval
        self._repeat = repeat
        self._index = 0

    @classmethod
    def along_route(
        cls,
        stations: Sequence[RouteStation],
        *,
        steps_per_leg: int = 10,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> ReplayPositionSource:
        """Interpolate a straight path through *stations* in route order."""
        ordered = sorted(stations, key=lambda station: station.order)
        points: list[tuple[float, float]] = []
        for start, end in zip(ordered, ordered[1:]):
            for step in range(steps_per_leg):
                ratio = step / steps_per_leg
                points.append(
                    (
                        start.latitude + (end.latitude - start.latitude) * ratio,
                        start.longitude + (end.longitude - start.longitude) * ratio,
                    )
                )
        if ordered:
            points.append((ordered[-1].latitude, ordered[-1].longitude))
        return cls(points, interval=interval)

    @property
    def exhausted(self) -> bool:
        return not self._repeat and self._index >= len(self._points)

    def _current(self) -> RawPosition:
        latitude, longitude = self._points[min(max(self._index - 1, 0), len(self._points) - 1)]
        return {"latitude": latitude, "longitude": longitude}

    def _advance(self) -> RawPosition | None:
        if self._index >= len(self._points):
            if not self._repeat:
                return None
            self._index = 0
        self._index += 1
        return self._current()

    def watch_position(
        self,
        on_position: Callable[[RawPosition], None],
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> WatchHandle:
        async def _run() -> None:
            while True:
                raw = self._advance()
                if raw is None:
                    return
                on_position(raw)
                await asyncio.sleep(self._interval)

        return _ReplayWatch(asyncio.get_running_loop().create_task(_run()))

    async def current_position(self, options: PositionOptions) -> RawPosition:
        return self._current()
