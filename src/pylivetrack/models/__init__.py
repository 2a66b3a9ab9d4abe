"""Data models for tracking payloads and simulation state."""

from pylivetrack.models._base import EpochMillis, TrackingBaseModel, now_ms, parse_epoch_millis
from pylivetrack.models.geocode import GeocodeCacheEntry, GeocodeResult
from pylivetrack.models.geometry import Coordinate, RouteGeometry
from pylivetrack.models.location import LocationUpdate, parse_location_payload, parse_location_update
from pylivetrack.models.vehicle import ShipmentStatus, SimulatedVehicle, VehicleState

__all__ = [
    "Coordinate",
    "EpochMillis",
    "GeocodeCacheEntry",
    "GeocodeResult",
    "LocationUpdate",
    "RouteGeometry",
    "ShipmentStatus",
    "SimulatedVehicle",
    "TrackingBaseModel",
    "VehicleState",
    "now_ms",
    "parse_epoch_millis",
    "parse_location_payload",
    "parse_location_update",
]
