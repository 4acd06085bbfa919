#!/usr/bin/env python3
"""Drive a trip along its route with synthetic GPS fixes.

Loads the driver's schedule and route, replays interpolated positions
between the stations and prints the local next-station estimate as it
changes. Useful for exercising the backend and a passenger view without
a real bus.

Usage
-----
::

    export TRANSIT_BASE_URL="http://localhost:5000/api"
    export TRANSIT_ACCESS_TOKEN="..."
    python scripts/simulate_trip.py DRIVER_ID

Options::

    --schedule ID        Use this schedule instead of the current one
    --steps N            Interpolated fixes between two stations (default: 10)
    --interval SECS      Seconds between fixes (default: 5)
    --finish MODE        end | cancel | leave (default: cancel)
    --verbose / -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from bustrack import (  # noqa: E402
    NextStationEstimate,
    ReplayPositionSource,
    TransitClient,
    TransitConfig,
    TransitError,
    TripGuardError,
    TripState,
)

_LOG = logging.getLogger("simulate_trip")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a synthetic bus trip along its route.")
    parser.add_argument("driver_id", help="Driver identity used for the trip.")
    parser.add_argument("--schedule", type=int, default=None, help="Schedule id (default: current schedule).")
    parser.add_argument("--steps", type=int, default=10, help="Interpolated fixes between two stations.")
    parser.add_argument("--interval", type=float, default=5.0, help="Seconds between fixes.")
    parser.add_argument(
        "--finish",
        choices=("end", "cancel", "leave"),
        default="cancel",
        help="What to do once the route is replayed.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_estimate(estimate: NextStationEstimate | None) -> None:
    if estimate is None:
        print("  next station: end of route")
        return
    print(f"  next station: #{estimate.order} {estimate.station_name} {estimate.distance_km} km ~{estimate.eta_minutes} min")


async def _run(args: argparse.Namespace) -> int:
    config = TransitConfig.from_env(poll_interval=max(args.interval, 0.5))
    async with TransitClient(config) as client:
        schedule = await client.resolve_schedule(args.driver_id, args.schedule)
        stations = await client.get_route_stations(schedule.trip_id)
        if not stations:
            print(f"Trip {schedule.trip_id} has no stations with coordinates", file=sys.stderr)
            return 1

        print(f"Trip {schedule.trip_id}: {schedule.from_} -> {schedule.to} ({len(stations)} stations)")
        source = ReplayPositionSource.along_route(stations, steps_per_leg=args.steps, interval=args.interval)
        trip = await client.open_trip(
            args.driver_id,
            source,
            schedule_id=schedule.sch_id,
            on_estimate=_print_estimate,
        )
        if trip.state == TripState.IN_PROGRESS:
            print("Resumed trip in progress")
        else:
            await trip.start()
            print("Trip started")

        while not source.exhausted and trip.is_tracking:
            await asyncio.sleep(args.interval)
        await asyncio.sleep(args.interval)

        if args.finish == "leave":
            await trip.close()
            print("Tracking stopped; trip left in progress")
        elif args.finish == "end":
            try:
                await trip.end()
            except TripGuardError as exc:
                print(f"Cannot end yet: {exc}", file=sys.stderr)
                await trip.close()
                return 2
            print("Trip completed")
        else:
            await trip.cancel()
            print("Trip cancelled")
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except TransitError as exc:
        _LOG.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
