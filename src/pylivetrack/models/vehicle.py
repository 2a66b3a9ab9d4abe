"""Vehicle lifecycle enum and simulated vehicle snapshot."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from pylivetrack.models._base import TrackingBaseModel
from pylivetrack.models.geometry import RouteGeometry


class ShipmentStatus(StrEnum):
    """Persisted shipment status values of the platform."""

    PLANNED = "PLANNED"
    BOOKED = "BOOKED"
    IN_TRANSIT = "IN_TRANSIT"
    AT_PICKUP = "AT_PICKUP"
    AT_DROPOFF = "AT_DROPOFF"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXCEPTION = "EXCEPTION"


class VehicleState(StrEnum):
    """Operational lifecycle of a shipment's vehicle.

    Declaration order is the forward chain; ``FAILED`` and ``CANCELLED``
    are exception states reachable from any non-terminal state.
    """

    IDLE = "Idle"
    ASSIGNED = "Assigned"
    ACCEPTED = "Accepted"
    ARRIVED_AT_PICKUP = "ArrivedAtPickup"
    LOADING = "Loading"
    LOADING_COMPLETE = "LoadingComplete"
    EN_ROUTE = "EnRoute"
    ARRIVED_AT_DROPOFF = "ArrivedAtDropoff"
    UNLOADING = "Unloading"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def shipment_status(self) -> ShipmentStatus:
        """Persisted shipment status this lifecycle state is stored as."""
        return _SHIPMENT_STATUS[self]

    @property
    def is_trackable(self) -> bool:
        """Whether a live map should subscribe to this vehicle."""
        return self.shipment_status in _TRACKABLE_SHIPMENT_STATUSES


_TERMINAL_STATES = frozenset({VehicleState.COMPLETED, VehicleState.FAILED, VehicleState.CANCELLED})

_SHIPMENT_STATUS: dict[VehicleState, ShipmentStatus] = {
    VehicleState.IDLE: ShipmentStatus.PLANNED,
    VehicleState.ASSIGNED: ShipmentStatus.BOOKED,
    VehicleState.ACCEPTED: ShipmentStatus.BOOKED,
    VehicleState.ARRIVED_AT_PICKUP: ShipmentStatus.AT_PICKUP,
    VehicleState.LOADING: ShipmentStatus.AT_PICKUP,
    VehicleState.LOADING_COMPLETE: ShipmentStatus.AT_PICKUP,
    VehicleState.EN_ROUTE: ShipmentStatus.IN_TRANSIT,
    VehicleState.ARRIVED_AT_DROPOFF: ShipmentStatus.AT_DROPOFF,
    VehicleState.UNLOADING: ShipmentStatus.AT_DROPOFF,
    VehicleState.COMPLETED: ShipmentStatus.COMPLETED,
    VehicleState.FAILED: ShipmentStatus.EXCEPTION,
    VehicleState.CANCELLED: ShipmentStatus.CANCELLED,
}

_TRACKABLE_SHIPMENT_STATUSES = frozenset(
    {ShipmentStatus.IN_TRANSIT, ShipmentStatus.AT_PICKUP, ShipmentStatus.AT_DROPOFF}
)


class SimulatedVehicle(TrackingBaseModel):
    """Immutable traversal snapshot of one simulated vehicle.

    The simulator replaces the snapshot on every tick; nothing else
    changes ``traveled_distance_meters``.
    """

    id: str
    route: RouteGeometry
    traveled_distance_meters: float = Field(default=0.0, ge=0.0)
    heading: float = Field(default=0.0, ge=0.0, lt=360.0)
    status: VehicleState = VehicleState.IDLE
    last_tick_timestamp: int | None = None

    @property
    def at_end(self) -> bool:
        return self.traveled_distance_meters >= self.route.total_distance_meters

    @property
    def progress(self) -> float:
        """Fraction of the route covered, ``0.0`` to ``1.0``."""
        return min(1.0, self.traveled_distance_meters / self.route.total_distance_meters)
