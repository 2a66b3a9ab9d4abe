from __future__ import annotations

import pytest

from pylivetrack.geo import bearing_degrees, cumulative_distances, distance_meters, interpolate, kph_to_mps
from pylivetrack.models import Coordinate, RouteGeometry


def _c(lon: float, lat: float) -> Coordinate:
    return Coordinate(longitude=lon, latitude=lat)


def test_distance_is_zero_for_identical_points() -> None:
    assert distance_meters(_c(101.5, 3.0), _c(101.5, 3.0)) == 0.0


def test_distance_one_degree_latitude() -> None:
    d = distance_meters(_c(0.0, 0.0), _c(0.0, 1.0))
    assert d == pytest.approx(111_195.0, rel=1e-3)


def test_distance_is_symmetric() -> None:
    a, b = _c(101.52, 3.05), _c(100.41, 5.358)
    assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))


@pytest.mark.parametrize(
    ("target", "expected"),
    [
        ((0.0, 1.0), 0.0),
        ((1.0, 0.0), 90.0),
        ((0.0, -1.0), 180.0),
        ((-1.0, 0.0), 270.0),
    ],
)
def test_bearing_cardinal_directions(target: tuple[float, float], expected: float) -> None:
    assert bearing_degrees(_c(0.0, 0.0), _c(*target)) == pytest.approx(expected, abs=1e-9)


def test_bearing_always_in_range() -> None:
    origin = _c(101.5, 3.0)
    for lon in (-179.9, -90.0, -1e-12, 0.0, 1e-12, 45.0, 179.9):
        for lat in (-80.0, -1e-12, 0.0, 2.999999, 3.0, 60.0):
            target = _c(lon, lat)
            if target == origin:
                continue
            value = bearing_degrees(origin, target)
            assert 0.0 <= value < 360.0


def test_cumulative_distances_start_at_zero_and_increase(bent_route: RouteGeometry) -> None:
    totals = cumulative_distances(bent_route.coordinates)
    assert totals[0] == 0.0
    assert totals == sorted(totals)
    assert totals[-1] == pytest.approx(bent_route.total_distance_meters)


def test_interpolate_boundaries(bent_route: RouteGeometry) -> None:
    start, start_end = interpolate(bent_route, 0.0)
    finish, finish_end = interpolate(bent_route, bent_route.total_distance_meters)
    assert start == bent_route.coordinates[0]
    assert start_end is False
    assert finish == bent_route.coordinates[-1]
    assert finish_end is True


def test_interpolate_clamps_out_of_range(bent_route: RouteGeometry) -> None:
    assert interpolate(bent_route, -50.0) == (bent_route.coordinates[0], False)
    assert interpolate(bent_route, bent_route.total_distance_meters * 2) == (bent_route.coordinates[-1], True)


def test_interpolate_exactly_on_waypoint_returns_waypoint(bent_route: RouteGeometry) -> None:
    corner_at = bent_route.cumulative_distances[1]
    point, end_reached = interpolate(bent_route, corner_at)
    assert point == bent_route.coordinates[1]
    assert end_reached is False


def test_interpolate_midpoint_of_segment(short_route: RouteGeometry) -> None:
    point, _ = interpolate(short_route, 125.0)
    a, b = short_route.coordinates[0], short_route.coordinates[1]
    assert point.longitude == pytest.approx(101.5)
    assert point.latitude == pytest.approx((a.latitude + b.latitude) / 2)


def test_distance_between_interpolated_points_grows_with_d2(bent_route: RouteGeometry) -> None:
    total = bent_route.total_distance_meters
    for d1 in (0.0, total * 0.25):
        anchor, _ = interpolate(bent_route, d1)
        previous = -1.0
        for i in range(41):
            d2 = d1 + (total - d1) * i / 40
            current = distance_meters(anchor, interpolate(bent_route, d2)[0])
            assert current >= previous - 1e-6
            previous = current


def test_interpolate_straight_route_distance_grows_monotonically(short_route: RouteGeometry) -> None:
    origin = short_route.coordinates[0]
    distances = [distance_meters(origin, interpolate(short_route, d)[0]) for d in range(0, 1001, 50)]
    assert distances == sorted(distances)
    assert distances[-1] == pytest.approx(1_000.0, rel=1e-6)


def test_interpolate_scales_when_reported_total_differs() -> None:
    coords = ((101.5, 3.0), (101.5, 3.01))
    geometric = RouteGeometry.from_coordinates(coords)
    reported = RouteGeometry(
        coordinates=coords,
        total_distance_meters=geometric.total_distance_meters * 2,
        total_duration_seconds=100.0,
    )
    half, end_reached = interpolate(reported, reported.total_distance_meters / 2)
    assert end_reached is False
    assert half.latitude == pytest.approx(3.005)
    assert interpolate(reported, reported.total_distance_meters)[0] == reported.coordinates[-1]


def test_kph_to_mps() -> None:
    assert kph_to_mps(70.0) == pytest.approx(19.444, rel=1e-3)
    assert kph_to_mps(36.0) == pytest.approx(10.0)
