"""Route geometry provider with caching.

Routes between the same pair of points are fetched from the backend once
and then served from memory.  Failures are never cached.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from pylivetrack._cache import TtlCache
from pylivetrack._constants import COORDINATE_KEY_PRECISION
from pylivetrack.exceptions import NoRouteFoundError, RoutingBackendUnavailableError, TrackingError
from pylivetrack.models import Coordinate, RouteGeometry

_logger = logging.getLogger(__name__)

RouteKey = tuple[float, float, float, float]


class RoutingBackend(Protocol):
    """Anything that turns waypoints into candidate routes (best first)."""

    async def fetch_routes(self, waypoints: Sequence[Coordinate]) -> list[RouteGeometry]:
        ...


def route_cache_key(origin: Coordinate, destination: Coordinate) -> RouteKey:
    """Ordered coordinate pair rounded to ~0.1 m."""
    p = COORDINATE_KEY_PRECISION
    return (
        round(origin.longitude, p),
        round(origin.latitude, p),
        round(destination.longitude, p),
        round(destination.latitude, p),
    )


class RouteGeometryProvider:
    """Fetch and cache the routed path between two coordinates.

    Parameters
    ----------
    backend : RoutingBackend
        Upstream routing service.
    ttl : float
        Seconds a cached route stays valid; ``0`` keeps it forever.
    clock : callable
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        backend: RoutingBackend,
        *,
        ttl: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._cache: TtlCache[RouteKey, RouteGeometry] = TtlCache(ttl, clock=clock)

    async def get_route(self, origin: Coordinate, destination: Coordinate) -> RouteGeometry:
        """Return the best route from *origin* to *destination*.

        Raises
        ------
        NoRouteFoundError
            The backend answered with zero routes.
        RoutingBackendUnavailableError
            The backend call failed.
        """
        key = route_cache_key(origin, destination)

        async def _load() -> RouteGeometry:
            _logger.debug("Route cache miss %s -> %s", origin, destination)
            try:
                routes = await self._backend.fetch_routes([origin, destination])
            except (NoRouteFoundError, RoutingBackendUnavailableError):
                raise
            except TrackingError as exc:
                raise RoutingBackendUnavailableError(str(exc)) from exc
            if not routes:
                raise NoRouteFoundError(f"No route found from {origin} to {destination}")
            return routes[0]

        return await self._cache.get_or_load(key, _load)

    def cached(self, origin: Coordinate, destination: Coordinate) -> RouteGeometry | None:
        return self._cache.get(route_cache_key(origin, destination))

    def invalidate(self, origin: Coordinate | None = None, destination: Coordinate | None = None) -> None:
        """Drop one cached route, or all of them when no pair is given."""
        if origin is None or destination is None:
            self._cache.invalidate()
        else:
            self._cache.invalidate(route_cache_key(origin, destination))


class StaticRoutingBackend:
    """Routing backend that connects the waypoints with straight segments.

    Used when no Mapbox token is configured and for demos; the duration is
    derived from *speed_mps*.
    """

    def __init__(self, speed_mps: float) -> None:
        self._speed_mps = speed_mps

    async def fetch_routes(self, waypoints: Sequence[Coordinate]) -> list[RouteGeometry]:
        if len(waypoints) < 2:
            raise ValueError("At least two waypoints are required")
        try:
            route = RouteGeometry.from_coordinates(list(waypoints), speed_mps=self._speed_mps)
        except ValueError:
            # Coincident waypoints have zero length.
            return []
        return [route]
