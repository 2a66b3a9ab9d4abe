"""Location update model and wire parsing."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from pylivetrack.exceptions import InvalidLocationUpdateError
from pylivetrack.models._base import EpochMillis, TrackingBaseModel

_logger = logging.getLogger(__name__)


class LocationUpdate(TrackingBaseModel):
    """A single position fix for a vehicle.

    Wire shape::

        {"vehicleId": "V1", "latitude": 3.05, "longitude": 101.52,
         "timestamp": 1735689600000, "heading": 12.5, "speed": 19.4,
         "accuracy": 10}

    ``shipmentId`` is accepted in place of ``vehicleId`` on input.

    Parameters
    ----------
    vehicle_id : str
        Vehicle (or shipment) identifier.
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    timestamp : int
        Epoch milliseconds.  Non-decreasing per vehicle.
    heading : float or None
        Heading in degrees, ``[0, 360)``.
    speed : float or None
        Speed in meters per second.
    accuracy : float or None
        Horizontal accuracy in meters.
    """

    vehicle_id: str = Field(validation_alias=AliasChoices("vehicleId", "vehicle_id", "shipmentId", "shipment_id"))
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    timestamp: EpochMillis = Field(ge=0)
    heading: float | None = Field(default=None, ge=0.0, lt=360.0)
    speed: float | None = Field(default=None, ge=0.0)
    accuracy: float | None = Field(default=None, ge=0.0)

    @field_validator("vehicle_id", mode="before")
    @classmethod
    def _normalize_vehicle_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValueError("vehicle_id must be non-empty")
            return stripped
        return value

    @field_validator("heading", mode="before")
    @classmethod
    def _wrap_heading(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            wrapped = float(value) % 360.0
            return 0.0 if wrapped >= 360.0 else wrapped
        return value


def parse_location_update(payload: Any) -> LocationUpdate:
    """Validate one payload into a :class:`LocationUpdate`.

    Raises
    ------
    InvalidLocationUpdateError
        When the id or coordinates are missing or out of range.
    """
    if isinstance(payload, LocationUpdate):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InvalidLocationUpdateError(f"Location update is not JSON: {payload[:64]!r}") from exc
    if not isinstance(payload, dict):
        raise InvalidLocationUpdateError(f"Location update must be an object, got {type(payload).__name__}")
    try:
        return LocationUpdate.model_validate(payload)
    except ValidationError as exc:
        raise InvalidLocationUpdateError(f"Invalid location update: {exc.errors(include_url=False)}") from exc


def parse_location_payload(payload: Any) -> list[LocationUpdate]:
    """Parse a push/pull body that is either one update or an array of updates.

    Invalid entries are logged and dropped, never raised.
    """
    if isinstance(payload, (bytes, bytearray, str)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            _logger.warning("Dropping non-JSON location payload")
            return []
    if payload is None:
        return []
    items = payload if isinstance(payload, list) else [payload]
    updates: list[LocationUpdate] = []
    for item in items:
        try:
            updates.append(parse_location_update(item))
        except InvalidLocationUpdateError as exc:
            _logger.warning("Dropping invalid location update: %s", exc)
    return updates
