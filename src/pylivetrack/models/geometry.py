"""Coordinate and route geometry models."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import AliasChoices, Field, PrivateAttr, field_validator

from pylivetrack.models._base import TrackingBaseModel


class Coordinate(TrackingBaseModel):
    """WGS84 position in degrees.

    Parameters
    ----------
    longitude : float
        Longitude in [-180, 180].
    latitude : float
        Latitude in [-90, 90].
    """

    longitude: float = Field(ge=-180.0, le=180.0, validation_alias=AliasChoices("longitude", "lon", "lng"))
    latitude: float = Field(ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat"))

    @classmethod
    def from_lon_lat(cls, pair: Sequence[float]) -> Coordinate:
        """Build from a GeoJSON-style ``[lon, lat]`` pair."""
        if len(pair) < 2:
            raise ValueError(f"Expected [lon, lat], got {pair!r}")
        return cls(longitude=float(pair[0]), latitude=float(pair[1]))

    @classmethod
    def parse(cls, text: str) -> Coordinate:
        """Parse ``"lon,lat"`` (the CLI / query-string form)."""
        parts = [part.strip() for part in text.split(",")]
        if len(parts) != 2:
            raise ValueError(f"Expected 'lon,lat', got {text!r}")
        return cls(longitude=float(parts[0]), latitude=float(parts[1]))

    def as_lon_lat(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)

    def __str__(self) -> str:
        return f"{self.longitude:.6f},{self.latitude:.6f}"


class RouteGeometry(TrackingBaseModel):
    """A routed path between two points.

    Immutable once fetched.  Cumulative per-segment distances along the
    polyline are computed once at construction time.

    Parameters
    ----------
    coordinates : tuple of Coordinate
        Ordered polyline, at least two points.
    total_distance_meters : float
        Route length as reported by the routing backend.
    total_duration_seconds : float
        Expected travel time as reported by the routing backend.
    """

    coordinates: tuple[Coordinate, ...] = Field(min_length=2)
    total_distance_meters: float = Field(
        gt=0.0,
        validation_alias=AliasChoices("total_distance_meters", "totalDistanceMeters", "distance"),
    )
    total_duration_seconds: float = Field(
        gt=0.0,
        validation_alias=AliasChoices("total_duration_seconds", "totalDurationSeconds", "duration"),
    )

    _cumulative: tuple[float, ...] = PrivateAttr(default=())

    @field_validator("coordinates", mode="before")
    @classmethod
    def _coerce_pairs(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return value
        coerced: list[Any] = []
        for item in value:
            if isinstance(item, (list, tuple)):
                coerced.append(Coordinate.from_lon_lat(item))
            else:
                coerced.append(item)
        return tuple(coerced)

    def model_post_init(self, __context: Any) -> None:
        from pylivetrack.geo import cumulative_distances

        self._cumulative = tuple(cumulative_distances(self.coordinates))

    @classmethod
    def from_coordinates(
        cls,
        coordinates: Sequence[Coordinate | Sequence[float]],
        *,
        duration_seconds: float | None = None,
        speed_mps: float | None = None,
    ) -> RouteGeometry:
        """Build a geometry whose total distance is the polyline length.

        The duration is taken as given, or derived from *speed_mps*, or
        defaults to one second per meter.
        """
        from pylivetrack.geo import cumulative_distances

        points = [c if isinstance(c, Coordinate) else Coordinate.from_lon_lat(c) for c in coordinates]
        length = cumulative_distances(points)[-1] if points else 0.0
        if duration_seconds is None:
            duration_seconds = length / speed_mps if speed_mps else length
        return cls(
            coordinates=tuple(points),
            total_distance_meters=length,
            total_duration_seconds=duration_seconds,
        )

    @property
    def cumulative_distances(self) -> tuple[float, ...]:
        """Running great-circle distance at each waypoint, starting at 0."""
        return self._cumulative

    @property
    def geometric_length_meters(self) -> float:
        return self._cumulative[-1]

    @property
    def origin(self) -> Coordinate:
        return self.coordinates[0]

    @property
    def destination(self) -> Coordinate:
        return self.coordinates[-1]
