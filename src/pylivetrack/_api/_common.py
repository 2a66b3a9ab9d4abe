"""Shared helpers for upstream API modules.

Internal to pylivetrack and may change at any time.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pylivetrack.exceptions import TrackingConfigError
from pylivetrack.models import Coordinate


def safe_float(value: Any) -> float | None:
    """Convert a value to float, returning None on failure."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (ValueError, TypeError):
        return None
    if result != result:  # NaN check
        return None
    return result


def format_waypoints(waypoints: Sequence[Coordinate]) -> str:
    """Mapbox path segment ``lon,lat;lon,lat``."""
    return ";".join(f"{point.longitude:.6f},{point.latitude:.6f}" for point in waypoints)


def require_token(token: str | None, what: str) -> str:
    if not token:
        raise TrackingConfigError(f"A Mapbox access token is required for {what}")
    return token
