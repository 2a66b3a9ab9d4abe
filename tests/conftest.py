from __future__ import annotations

import math
from collections.abc import Callable

import pytest

from pylivetrack._constants import EARTH_RADIUS_METERS
from pylivetrack.models import Coordinate, RouteGeometry

# Degrees of latitude per meter along a meridian.
_DEG_PER_METER = 180.0 / (math.pi * EARTH_RADIUS_METERS)

RouteFactory = Callable[..., RouteGeometry]


def _northbound_route(length_meters: float, *, segments: int = 4, duration_seconds: float = 600.0) -> RouteGeometry:
    step = length_meters / segments
    coords = [Coordinate(longitude=101.5, latitude=3.0 + i * step * _DEG_PER_METER) for i in range(segments + 1)]
    return RouteGeometry(
        coordinates=tuple(coords),
        total_distance_meters=length_meters,
        total_duration_seconds=duration_seconds,
    )


@pytest.fixture
def make_route() -> RouteFactory:
    """Straight route due north from (101.5, 3.0) with evenly spaced waypoints."""
    return _northbound_route


@pytest.fixture
def short_route() -> RouteGeometry:
    return _northbound_route(1_000.0)


@pytest.fixture
def ten_km_route() -> RouteGeometry:
    return _northbound_route(10_000.0, segments=10)


@pytest.fixture
def bent_route() -> RouteGeometry:
    """North for ~1 km, then east for ~1 km."""
    return RouteGeometry.from_coordinates(
        [
            (101.5, 3.0),
            (101.5, 3.009),
            (101.509, 3.009),
        ],
        speed_mps=10.0,
    )


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_735_689_600_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
