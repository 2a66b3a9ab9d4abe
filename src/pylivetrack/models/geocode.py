"""Geocoding result and cache entry models."""

from __future__ import annotations

from pydantic import Field

from pylivetrack.models._base import TrackingBaseModel
from pylivetrack.models.geometry import Coordinate


class GeocodeResult(TrackingBaseModel):
    """One resolved candidate for a free-text address.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    resolution_method : str
        How the coordinates were obtained (``"geocode"``, ``"manual"``, ...).
    confidence : float
        Score in ``[0, 1]``; Mapbox relevance for upstream results.
    place_name : str or None
        Formatted address returned by the geocoder.
    """

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    resolution_method: str = "geocode"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    place_name: str | None = None
    street: str | None = None
    city: str | None = None
    state_province: str | None = None
    postal_code: str | None = None
    country: str | None = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(longitude=self.longitude, latitude=self.latitude)


class GeocodeCacheEntry(TrackingBaseModel):
    """Cached results for one normalised query.

    Created on the first successful lookup and replaced (never mutated)
    on refresh.  ``ttl`` of ``0`` never expires.
    """

    query_key: str
    results: tuple[GeocodeResult, ...] = ()
    created_at: float
    ttl: float = Field(ge=0.0)

    def is_expired(self, now: float) -> bool:
        if self.ttl <= 0:
            return False
        return (now - self.created_at) > self.ttl
