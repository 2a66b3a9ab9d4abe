"""Great-circle helpers and distance-based interpolation along a route.

All functions are pure and synchronous.
"""

from __future__ import annotations

import bisect
import math
from collections.abc import Sequence

from pylivetrack._constants import EARTH_RADIUS_METERS, METERS_PER_SECOND_PER_KPH
from pylivetrack.models.geometry import Coordinate, RouteGeometry


def kph_to_mps(kph: float) -> float:
    return kph * METERS_PER_SECOND_PER_KPH


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two coordinates, in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Clamp against float drift for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Initial bearing from *a* to *b*, normalised to ``[0, 360)``."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -1e-15 % 360 rounds to 360.0
    if bearing >= 360.0:
        bearing = 0.0
    return bearing


def cumulative_distances(coordinates: Sequence[Coordinate]) -> list[float]:
    """Running distance at each point of a polyline (first entry is 0)."""
    totals: list[float] = []
    running = 0.0
    previous: Coordinate | None = None
    for point in coordinates:
        if previous is not None:
            running += distance_meters(previous, point)
        totals.append(running)
        previous = point
    return totals


def _lerp(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    # Segments are short road pieces; linear lon/lat interpolation is what
    # route renderers draw, so the simulated dot stays on the drawn line.
    return Coordinate(
        longitude=a.longitude + (b.longitude - a.longitude) * fraction,
        latitude=a.latitude + (b.latitude - a.latitude) * fraction,
    )


def interpolate(route: RouteGeometry, traveled_distance_meters: float) -> tuple[Coordinate, bool]:
    """Point on *route* after *traveled_distance_meters*.

    The distance is clamped to ``[0, total_distance_meters]``.  Returns the
    point and whether the end of the route has been reached.  A distance
    that falls exactly on a waypoint returns that waypoint.

    When the backend-reported total differs from the polyline length the
    traveled distance is mapped proportionally onto the polyline, so the
    reported total always lands on the last point.
    """
    total = route.total_distance_meters
    if traveled_distance_meters >= total:
        return route.coordinates[-1], True

    traveled = max(0.0, traveled_distance_meters)
    cumulative = route.cumulative_distances
    length = cumulative[-1]
    if length <= 0.0:
        # Degenerate polyline (all points identical).
        return route.coordinates[0], False
    if length != total:
        traveled = traveled * (length / total)

    index = bisect.bisect_right(cumulative, traveled) - 1
    if index >= len(cumulative) - 1:
        return route.coordinates[-1], False
    start_at = cumulative[index]
    if traveled == start_at:
        return route.coordinates[index], False
    segment = cumulative[index + 1] - start_at
    fraction = (traveled - start_at) / segment if segment > 0 else 0.0
    return _lerp(route.coordinates[index], route.coordinates[index + 1], fraction), False
