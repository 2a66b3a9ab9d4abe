from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from pylivetrack._api.directions import MapboxDirectionsBackend, parse_directions_response
from pylivetrack._api.geocoding import MapboxGeocoder, parse_geocoding_response
from pylivetrack._transport import _redact_params
from pylivetrack.exceptions import (
    GeocodingError,
    RoutingBackendUnavailableError,
    TrackingConfigError,
    TrackingTransportError,
)
from pylivetrack.models import Coordinate

ORIGIN = Coordinate(longitude=101.527, latitude=3.052)
DESTINATION = Coordinate(longitude=101.6931, latitude=3.1445)

DIRECTIONS_BODY: dict[str, Any] = {
    "code": "Ok",
    "routes": [
        {
            "distance": 24_310.5,
            "duration": 1_520.2,
            "geometry": {
                "type": "LineString",
                "coordinates": [[101.527, 3.052], [101.6, 3.1], [101.6931, 3.1445]],
            },
        }
    ],
    "waypoints": [],
}

GEOCODING_BODY: dict[str, Any] = {
    "type": "FeatureCollection",
    "features": [
        {
            "place_type": ["address"],
            "relevance": 0.87,
            "address": "123",
            "text": "Main St",
            "place_name": "123 Main St, Springfield, Illinois 62701, United States",
            "center": [-89.65, 39.78],
            "context": [
                {"id": "postcode.1", "text": "62701"},
                {"id": "locality.2", "text": "Downtown"},
                {"id": "place.3", "text": "Springfield"},
                {"id": "region.4", "text": "Illinois"},
                {"id": "country.5", "text": "United States"},
            ],
        },
        {"place_type": ["place"], "center": ["bad"], "text": "Broken"},
    ],
}


class _FakeTransport:
    def __init__(self, response: Any) -> None:
        self.response = response
        self.requests: list[tuple[str, dict[str, Any]]] = []

    async def get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        self.requests.append((url, dict(params or {})))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.mark.asyncio
async def test_directions_request_shape() -> None:
    transport = _FakeTransport(DIRECTIONS_BODY)
    backend = MapboxDirectionsBackend(transport, "pk.test", base_url="https://api.mapbox.com/", profile="driving")

    routes = await backend.fetch_routes([ORIGIN, DESTINATION])

    url, params = transport.requests[0]
    assert url == "https://api.mapbox.com/directions/v5/mapbox/driving/101.527000,3.052000;101.693100,3.144500"
    assert params == {
        "geometries": "geojson",
        "overview": "full",
        "steps": "false",
        "alternatives": "false",
        "access_token": "pk.test",
    }
    assert len(routes) == 1
    assert routes[0].total_distance_meters == 24_310.5
    assert routes[0].total_duration_seconds == 1_520.2
    assert routes[0].destination == DESTINATION


def test_directions_parse_handles_no_route() -> None:
    assert parse_directions_response({"code": "NoRoute", "routes": []}) == []
    assert parse_directions_response({"code": "Ok"}) == []


def test_directions_parse_skips_malformed_routes() -> None:
    body = {"code": "Ok", "routes": [{"distance": 10}, DIRECTIONS_BODY["routes"][0]]}
    assert len(parse_directions_response(body)) == 1


def test_directions_parse_rejects_error_codes() -> None:
    with pytest.raises(RoutingBackendUnavailableError):
        parse_directions_response({"code": "InvalidInput", "message": "bad coordinates"})
    with pytest.raises(RoutingBackendUnavailableError):
        parse_directions_response(["not", "an", "object"])


@pytest.mark.asyncio
async def test_directions_transport_failure_is_unavailable() -> None:
    transport = _FakeTransport(TrackingTransportError("timed out"))
    backend = MapboxDirectionsBackend(transport, "pk.test")
    with pytest.raises(RoutingBackendUnavailableError):
        await backend.fetch_routes([ORIGIN, DESTINATION])


@pytest.mark.asyncio
async def test_directions_422_no_route_is_empty() -> None:
    error = TrackingTransportError('HTTP 422: {"code":"NoRoute"}', status_code=422)
    backend = MapboxDirectionsBackend(_FakeTransport(error), "pk.test")
    assert await backend.fetch_routes([ORIGIN, DESTINATION]) == []


@pytest.mark.asyncio
async def test_directions_requires_token() -> None:
    transport = _FakeTransport(DIRECTIONS_BODY)
    with pytest.raises(TrackingConfigError):
        await MapboxDirectionsBackend(transport, None).fetch_routes([ORIGIN, DESTINATION])
    assert transport.requests == []


def test_geocoding_parse_extracts_context() -> None:
    results = parse_geocoding_response(GEOCODING_BODY)
    assert len(results) == 1
    result = results[0]
    assert (result.longitude, result.latitude) == (-89.65, 39.78)
    assert result.confidence == 0.87
    assert result.street == "123 Main St"
    assert result.city == "Springfield"
    assert result.state_province == "Illinois"
    assert result.postal_code == "62701"
    assert result.country == "United States"
    assert result.resolution_method == "geocode"


@pytest.mark.asyncio
async def test_geocoder_request_shape() -> None:
    transport = _FakeTransport(GEOCODING_BODY)
    geocoder = MapboxGeocoder(transport, "pk.test", country="us", limit=3)
    results = await geocoder.geocode("123 Main St/Apt 4")

    url, params = transport.requests[0]
    assert url == "https://api.mapbox.com/geocoding/v5/mapbox.places/123%20Main%20St%2FApt%204.json"
    assert params == {"limit": 3, "country": "us", "access_token": "pk.test"}
    assert len(results) == 1


@pytest.mark.asyncio
async def test_geocoder_transport_failure() -> None:
    geocoder = MapboxGeocoder(_FakeTransport(TrackingTransportError("HTTP 401", status_code=401)), "pk.test")
    with pytest.raises(GeocodingError):
        await geocoder.geocode("123 Main St")


def test_access_token_is_redacted() -> None:
    assert _redact_params({"access_token": "pk.secret", "limit": 5}) == {"access_token": "***", "limit": 5}
    assert _redact_params(None) == {}
