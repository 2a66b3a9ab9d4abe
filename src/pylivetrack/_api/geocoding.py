"""Mapbox Geocoding API (forward search).

Endpoint:
  - GET /geocoding/v5/mapbox.places/{query}.json
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from pylivetrack._api._common import require_token, safe_float
from pylivetrack._constants import DEFAULT_MAPBOX_BASE_URL
from pylivetrack._transport import HttpTransport
from pylivetrack.exceptions import GeocodingError, TrackingTransportError
from pylivetrack.models import GeocodeResult

_logger = logging.getLogger(__name__)

_CONTEXT_FIELDS = {
    "postcode": "postal_code",
    "place": "city",
    "locality": "city",
    "region": "state_province",
    "country": "country",
}


def _context_fields(feature: dict[str, Any]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for entry in feature.get("context") or []:
        if not isinstance(entry, dict):
            continue
        kind = str(entry.get("id", "")).split(".", 1)[0]
        target = _CONTEXT_FIELDS.get(kind)
        text = entry.get("text")
        if not target or not isinstance(text, str):
            continue
        # "place" outranks "locality" for the city field.
        if target not in fields or kind == "place":
            fields[target] = text
    return fields


def _parse_feature(feature: Any) -> GeocodeResult | None:
    if not isinstance(feature, dict):
        return None
    center = feature.get("center")
    if not isinstance(center, list) or len(center) < 2:
        return None
    longitude = safe_float(center[0])
    latitude = safe_float(center[1])
    if longitude is None or latitude is None:
        return None

    street = feature.get("text") if "address" in (feature.get("place_type") or []) else None
    if street and feature.get("address"):
        street = f"{feature['address']} {street}"

    data: dict[str, Any] = {
        "latitude": latitude,
        "longitude": longitude,
        "resolution_method": "geocode",
        "confidence": safe_float(feature.get("relevance")),
        "place_name": feature.get("place_name"),
        "street": street,
        **_context_fields(feature),
    }
    try:
        return GeocodeResult.model_validate(data)
    except ValidationError:
        _logger.debug("Skipping malformed geocoding feature", exc_info=True)
        return None


def parse_geocoding_response(body: Any) -> list[GeocodeResult]:
    """Extract results from a Geocoding ``FeatureCollection``, best first."""
    if not isinstance(body, dict):
        raise GeocodingError(f"Unexpected geocoding body type {type(body).__name__}")
    features = body.get("features")
    if not isinstance(features, list):
        return []
    parsed = [_parse_feature(feature) for feature in features]
    return [result for result in parsed if result is not None]


class MapboxGeocoder:
    """Forward geocoder backed by the Mapbox Geocoding API."""

    def __init__(
        self,
        transport: HttpTransport,
        token: str | None,
        *,
        base_url: str = DEFAULT_MAPBOX_BASE_URL,
        country: str | None = None,
        limit: int = 5,
    ) -> None:
        self._transport = transport
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._country = country
        self._limit = limit

    async def geocode(self, query: str) -> list[GeocodeResult]:
        """Resolve free text into candidate coordinates.

        Raises
        ------
        GeocodingError
            When the upstream call fails.
        """
        token = require_token(self._token, "geocoding")
        url = f"{self._base_url}/geocoding/v5/mapbox.places/{quote(query, safe='')}.json"
        params: dict[str, Any] = {
            "limit": self._limit,
            "country": self._country,
            "access_token": token,
        }
        try:
            body = await self._transport.get_json(url, params)
        except TrackingTransportError as exc:
            raise GeocodingError(f"Geocoding request failed for {query!r}: {exc}") from exc
        results = parse_geocoding_response(body)
        _logger.debug("Geocoding %r returned %d result(s)", query, len(results))
        return results
