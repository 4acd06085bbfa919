#!/usr/bin/env python3
"""Follow a bus from a passenger's station.

Subscribes to the trip's live position topic and prints every position
with the backend's road distance/ETA to the chosen station. Optionally
also prints the user's notifications as they arrive.

Usage
-----
::

    python scripts/watch_bus.py TRIP_ID "Station Name"
    python scripts/watch_bus.py TRIP_ID "Station Name" --user USER_ID
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

from bustrack import Notification, TransitClient, TransitConfig, TransitError  # noqa: E402

_LOG = logging.getLogger("watch_bus")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch a bus approach a station.")
    parser.add_argument("trip_id", type=int, help="Trip to follow.")
    parser.add_argument("station", help="Origin station name.")
    parser.add_argument("--user", default=None, help="Also listen for this user's notifications.")
    parser.add_argument("--duration", type=int, default=0, help="Stop after N seconds (0 = until Ctrl+C).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_notification(notification: Notification) -> None:
    print(f"[notification] {notification.message}")


async def _watch(args: argparse.Namespace) -> int:
    async with TransitClient(TransitConfig.from_env()) as client:
        origin = await client.get_station(args.station)
        channel = client.new_channel()
        if args.user:
            await channel.connect_notifications(args.user, _print_notification)
            for notification in await client.get_notifications(args.user):
                if not notification.is_read:
                    _print_notification(notification)

        tracking = await client.bus_consumer(channel).track(args.trip_id, origin)
        if tracking.error is not None:
            print(f"Could not subscribe: {tracking.error}", file=sys.stderr)
            return 1
        print(f"Watching trip {args.trip_id} from {origin.name}")

        async def _print_positions() -> None:
            async for position in tracking:
                if position.distance_km is None:
                    print(f"bus at {position.bus_lat:.5f},{position.bus_lng:.5f} (distance unavailable)")
                else:
                    print(
                        f"bus at {position.bus_lat:.5f},{position.bus_lng:.5f} "
                        f"{position.distance_km} km, {position.eta_minutes} min"
                    )

        printer = asyncio.create_task(_print_positions())
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                await printer
        finally:
            await tracking.cancel()
            await printer
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_watch(args))
    except TransitError as exc:
        _LOG.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
