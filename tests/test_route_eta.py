"""Tests for haversine distance and next-station estimation."""

from __future__ import annotations

import pytest

from bustrack.models.position import PositionFix
from bustrack.models.route import RouteStation
from bustrack.route import NextStationTracker, estimate_eta_minutes, haversine_km, next_station


class TestHaversine:
    def test_zero_distance(self) -> None:
        assert haversine_km(30.0444, 31.2357, 30.0444, 31.2357) == 0.0

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ((30.0444, 31.2357), (31.2001, 29.9187)),
            ((-33.8688, 151.2093), (51.5074, -0.1278)),
            ((0.0, 179.9), (0.0, -179.9)),
        ],
    )
    def test_symmetric(self, a: tuple[float, float], b: tuple[float, float]) -> None:
        assert haversine_km(*a, *b) == pytest.approx(haversine_km(*b, *a))

    def test_one_degree_of_latitude(self) -> None:
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)


class TestEta:
    def test_forty_kmh(self) -> None:
        assert estimate_eta_minutes(20.0) == 30

    def test_rounds_half_up(self) -> None:
        # 0.25 km is 0.375 min, 1 km is exactly 1.5 min
        assert estimate_eta_minutes(0.25) == 0
        assert estimate_eta_minutes(1.0) == 2


class TestNextStation:
    def test_picks_nearest_ahead(self, route_stations: list[RouteStation]) -> None:
        fix = PositionFix.at(30.0, 31.041)
        estimate = next_station(fix, route_stations, 0)
        assert estimate is not None
        assert estimate.order == 3
        assert estimate.station_name == "Stop 3"

    def test_ignores_passed_stations_regardless_of_distance(self, route_stations: list[RouteStation]) -> None:
        # Sitting on top of stop 2, but stops 1 and 2 are already behind us.
        fix = PositionFix.at(30.0, 31.02)
        estimate = next_station(fix, route_stations, 2)
        assert estimate is not None
        assert estimate.order == 3

    def test_never_returns_order_at_or_below_last_reported(self, route_stations: list[RouteStation]) -> None:
        for last in range(0, 5):
            for lng in (30.9, 31.0, 31.03, 31.06, 31.2):
                estimate = next_station(PositionFix.at(30.0, lng), route_stations, last)
                assert estimate is None or estimate.order > last

    def test_end_of_route(self, route_stations: list[RouteStation]) -> None:
        assert next_station(PositionFix.at(30.0, 31.08), route_stations, 5) is None

    def test_distance_rounded_to_one_decimal(self, route_stations: list[RouteStation]) -> None:
        estimate = next_station(PositionFix.at(30.0, 31.0), route_stations, 1)
        assert estimate is not None
        assert estimate.order == 2
        assert estimate.distance_km == 1.9
        assert estimate.eta_minutes == 3

    def test_unsorted_input(self, route_stations: list[RouteStation]) -> None:
        shuffled = list(reversed(route_stations))
        estimate = next_station(PositionFix.at(30.0, 31.0), shuffled, 0)
        assert estimate is not None
        assert estimate.order == 1


class TestNextStationTracker:
    def test_consecutive_estimates_strictly_increase(self, route_stations: list[RouteStation]) -> None:
        tracker = NextStationTracker(route_stations)
        # Approaching stop 2, then 0.4 km past it.
        first = tracker.update(PositionFix.at(30.0, 31.018))
        second = tracker.update(PositionFix.at(30.0, 31.024))

        assert first is not None and first.order == 2
        assert second is not None and second.order == 3
        assert tracker.passed_order == 3

    def test_late_duplicate_does_not_regress(self, route_stations: list[RouteStation]) -> None:
        tracker = NextStationTracker(route_stations)
        # At stop 3: the estimate skips to stop 4.
        arrived = tracker.update(PositionFix.at(30.0, 31.04))
        assert arrived is not None and arrived.order == 4
        assert tracker.passed_order == 4

        # A stale fix from near stop 2 shows up late.
        stale = tracker.update(PositionFix.at(30.0, 31.02))
        assert stale is not None
        assert stale.order == 5

    def test_skips_stations_the_bus_has_moved_past(self, route_stations: list[RouteStation]) -> None:
        tracker = NextStationTracker(route_stations)
        first = tracker.update(PositionFix.at(30.0, 31.005))
        assert first is not None and first.order == 1

        later = tracker.update(PositionFix.at(30.0, 31.035))
        assert later is not None and later.order == 3
        assert tracker.passed_order == 3

    def test_orders_strictly_increase_over_a_trip(self, route_stations: list[RouteStation]) -> None:
        tracker = NextStationTracker(route_stations)
        seen: list[int] = []
        for lng in (31.0, 31.01, 31.03, 31.015, 31.05, 31.02, 31.07, 31.06):
            estimate = tracker.update(PositionFix.at(30.0, lng))
            if estimate is not None:
                seen.append(estimate.order)
        assert seen == sorted(set(seen))
        assert tracker.finished

    def test_finishes_at_last_station(self, route_stations: list[RouteStation]) -> None:
        tracker = NextStationTracker(route_stations, passed_order=4)
        assert tracker.update(PositionFix.at(30.0, 31.08)) is None
        assert tracker.finished
        assert tracker.current is None

    def test_resumes_from_persisted_progress(self, route_stations: list[RouteStation]) -> None:
        tracker = NextStationTracker(route_stations, passed_order=3)
        estimate = tracker.update(PositionFix.at(30.0, 31.0))
        assert estimate is not None
        assert estimate.order == 4
