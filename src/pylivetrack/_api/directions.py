"""Mapbox Directions API.

Endpoint:
  - GET /directions/v5/mapbox/{profile}/{lon,lat;lon,lat}
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from pylivetrack._api._common import format_waypoints, require_token, safe_float
from pylivetrack._constants import DEFAULT_MAPBOX_BASE_URL, DEFAULT_ROUTING_PROFILE
from pylivetrack._transport import HttpTransport
from pylivetrack.exceptions import RoutingBackendUnavailableError, TrackingTransportError
from pylivetrack.models import Coordinate, RouteGeometry

_logger = logging.getLogger(__name__)


def _parse_route(item: Any) -> RouteGeometry | None:
    """Parse one ``routes[]`` entry, or ``None`` when unusable."""
    if not isinstance(item, dict):
        return None
    geometry = item.get("geometry")
    coords = geometry.get("coordinates") if isinstance(geometry, dict) else None
    distance = safe_float(item.get("distance"))
    duration = safe_float(item.get("duration"))
    if not isinstance(coords, list) or distance is None or duration is None:
        return None
    try:
        return RouteGeometry.model_validate(
            {
                "coordinates": coords,
                "total_distance_meters": distance,
                "total_duration_seconds": duration,
            }
        )
    except (ValidationError, ValueError, TypeError):
        _logger.debug("Skipping malformed route entry", exc_info=True)
        return None


def parse_directions_response(body: Any) -> list[RouteGeometry]:
    """Extract route geometries from a Directions response body.

    A body with ``code == "NoRoute"`` or an empty ``routes`` array yields an
    empty list; that is a valid "no route" answer, not a failure.
    """
    if not isinstance(body, dict):
        raise RoutingBackendUnavailableError(f"Unexpected directions body type {type(body).__name__}")
    code = body.get("code")
    if code not in (None, "Ok", "NoRoute", "NoSegment"):
        raise RoutingBackendUnavailableError(f"Directions API returned code={code} message={body.get('message', '')}")
    routes = body.get("routes")
    if not isinstance(routes, list):
        return []
    parsed = [_parse_route(item) for item in routes]
    return [route for route in parsed if route is not None]


class MapboxDirectionsBackend:
    """Routing backend backed by the Mapbox Directions API."""

    def __init__(
        self,
        transport: HttpTransport,
        token: str | None,
        *,
        base_url: str = DEFAULT_MAPBOX_BASE_URL,
        profile: str = DEFAULT_ROUTING_PROFILE,
    ) -> None:
        self._transport = transport
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._profile = profile

    async def fetch_routes(self, waypoints: Sequence[Coordinate]) -> list[RouteGeometry]:
        """Fetch full-overview GeoJSON routes through *waypoints*.

        Raises
        ------
        RoutingBackendUnavailableError
            When the call fails at the transport level.
        """
        if len(waypoints) < 2:
            raise ValueError("At least two waypoints are required")
        token = require_token(self._token, "routing")
        url = f"{self._base_url}/directions/v5/mapbox/{self._profile}/{format_waypoints(waypoints)}"
        params = {
            "geometries": "geojson",
            "overview": "full",
            "steps": "false",
            "alternatives": "false",
            "access_token": token,
        }
        try:
            body = await self._transport.get_json(url, params)
        except TrackingTransportError as exc:
            # Mapbox answers 422 with code=NoRoute for unroutable pairs.
            if exc.status_code == 422 and "NoRoute" in str(exc):
                return []
            raise RoutingBackendUnavailableError(f"Directions request failed: {exc}") from exc

        routes = parse_directions_response(body)
        _logger.debug("Directions returned %d route(s) for %s", len(routes), format_waypoints(waypoints))
        return routes
