"""Distance-based position simulation along a routed path."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from pylivetrack._constants import (
    DEFAULT_ACCURACY_METERS,
    DEFAULT_AVERAGE_SPEED_KPH,
    DEFAULT_LOOKAHEAD_METERS,
)
from pylivetrack.geo import bearing_degrees, interpolate, kph_to_mps
from pylivetrack.models import LocationUpdate, RouteGeometry, SimulatedVehicle, VehicleState, now_ms
from pylivetrack.state.lifecycle import VehicleStateMachine

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TickResult:
    """Outcome of advancing one vehicle.

    ``update`` is ``None`` for no-op ticks (vehicle not en route, or the end
    of the route was already reported).
    """

    vehicle: SimulatedVehicle
    update: LocationUpdate | None
    end_reached: bool


def _heading_at(vehicle: SimulatedVehicle, traveled: float, lookahead_meters: float) -> float:
    route = vehicle.route
    total = route.total_distance_meters
    if traveled < total:
        position, _ = interpolate(route, traveled)
        ahead, _ = interpolate(route, min(traveled + lookahead_meters, total))
        if ahead == position:
            return vehicle.heading
        return bearing_degrees(position, ahead)
    if total < lookahead_meters:
        return vehicle.heading
    behind, _ = interpolate(route, total - lookahead_meters)
    end = route.destination
    if behind == end:
        return vehicle.heading
    return bearing_degrees(behind, end)


def step_vehicle(
    vehicle: SimulatedVehicle,
    delta_meters: float,
    *,
    speed_mps: float | None,
    lookahead_meters: float = DEFAULT_LOOKAHEAD_METERS,
    timestamp: int,
    accuracy: float | None = DEFAULT_ACCURACY_METERS,
) -> TickResult:
    """Move *vehicle* forward by *delta_meters* along its route.

    Pure: returns a new snapshot and the update to publish.
    """
    if delta_meters < 0:
        raise ValueError("delta_meters must be >= 0")
    total = vehicle.route.total_distance_meters
    traveled = min(vehicle.traveled_distance_meters + delta_meters, total)
    position, end_reached = interpolate(vehicle.route, traveled)
    heading = _heading_at(vehicle, traveled, lookahead_meters)

    next_vehicle = vehicle.model_copy(
        update={
            "traveled_distance_meters": traveled,
            "heading": heading,
            "last_tick_timestamp": timestamp,
        }
    )
    update = LocationUpdate(
        vehicle_id=vehicle.id,
        latitude=position.latitude,
        longitude=position.longitude,
        timestamp=timestamp,
        heading=heading,
        speed=speed_mps,
        accuracy=accuracy,
    )
    return TickResult(vehicle=next_vehicle, update=update, end_reached=end_reached)


def advance_vehicle(
    vehicle: SimulatedVehicle,
    delta_seconds: float,
    speed_mps: float,
    *,
    lookahead_meters: float = DEFAULT_LOOKAHEAD_METERS,
    now_ms: int,
    accuracy: float | None = DEFAULT_ACCURACY_METERS,
) -> TickResult:
    """Advance *vehicle* by ``speed_mps * delta_seconds`` meters.

    Parameters
    ----------
    vehicle : SimulatedVehicle
        Current snapshot.
    delta_seconds : float
        Elapsed simulated time.
    speed_mps : float
        Speed in meters per second.
    lookahead_meters : float
        Distance ahead used to derive the heading.
    now_ms : int
        Timestamp for the produced update.
    accuracy : float or None
        Reported horizontal accuracy.

    Returns
    -------
    TickResult
        New snapshot, the update and whether the route end was reached.
    """
    if delta_seconds < 0 or speed_mps < 0:
        raise ValueError("delta_seconds and speed_mps must be >= 0")
    return step_vehicle(
        vehicle,
        speed_mps * delta_seconds,
        speed_mps=speed_mps,
        lookahead_meters=lookahead_meters,
        timestamp=now_ms,
        accuracy=accuracy,
    )


class PositionSimulator:
    """Owns one simulated vehicle and its lifecycle state machine.

    Only ticks while the machine is ``EN_ROUTE``; the end of the route is
    reported exactly once.
    """

    def __init__(
        self,
        vehicle_id: str,
        route: RouteGeometry,
        *,
        speed_mps: float | None = None,
        lookahead_meters: float = DEFAULT_LOOKAHEAD_METERS,
        accuracy_meters: float | None = DEFAULT_ACCURACY_METERS,
        machine: VehicleStateMachine | None = None,
        initial_state: VehicleState = VehicleState.EN_ROUTE,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if speed_mps is None:
            speed_mps = kph_to_mps(DEFAULT_AVERAGE_SPEED_KPH)
        if speed_mps <= 0:
            raise ValueError("speed_mps must be > 0")
        self._machine = machine if machine is not None else VehicleStateMachine(vehicle_id, initial_state)
        self._vehicle = SimulatedVehicle(id=vehicle_id, route=route, status=self._machine.state)
        self._speed_mps = speed_mps
        self._lookahead_meters = lookahead_meters
        self._accuracy = accuracy_meters
        self._clock = clock
        self._end_reported = False

    @property
    def vehicle_id(self) -> str:
        return self._vehicle.id

    @property
    def vehicle(self) -> SimulatedVehicle:
        if self._vehicle.status != self._machine.state:
            self._vehicle = self._vehicle.model_copy(update={"status": self._machine.state})
        return self._vehicle

    @property
    def machine(self) -> VehicleStateMachine:
        return self._machine

    @property
    def route(self) -> RouteGeometry:
        return self._vehicle.route

    @property
    def speed_mps(self) -> float:
        return self._speed_mps

    @property
    def end_reached(self) -> bool:
        return self._end_reported

    @property
    def progress(self) -> float:
        return self._vehicle.progress

    @property
    def remaining_seconds(self) -> float:
        """Estimated time to the drop-off at the current speed."""
        remaining = self.route.total_distance_meters - self._vehicle.traveled_distance_meters
        return max(0.0, remaining) / self._speed_mps

    def _noop(self) -> TickResult:
        return TickResult(vehicle=self.vehicle, update=None, end_reached=False)

    def _step(self, delta_meters: float, speed_mps: float) -> TickResult:
        if not self._machine.is_en_route:
            _logger.debug("Ignoring tick for %s in state %s", self.vehicle_id, self._machine.state)
            return self._noop()
        if self._end_reported:
            return self._noop()
        result = step_vehicle(
            self.vehicle,
            delta_meters,
            speed_mps=speed_mps,
            lookahead_meters=self._lookahead_meters,
            timestamp=self._clock(),
            accuracy=self._accuracy,
        )
        self._vehicle = result.vehicle
        if result.end_reached:
            self._end_reported = True
            _logger.debug("Vehicle %s reached the end of its route", self.vehicle_id)
        return result

    def advance(self, delta_seconds: float, speed_mps: float | None = None) -> TickResult:
        """Advance by *delta_seconds* of travel at *speed_mps* (default speed when omitted)."""
        speed = self._speed_mps if speed_mps is None else speed_mps
        if delta_seconds < 0 or speed < 0:
            raise ValueError("delta_seconds and speed_mps must be >= 0")
        return self._step(speed * delta_seconds, speed)

    def advance_distance(self, delta_meters: float) -> TickResult:
        """Advance by an externally supplied traveled distance."""
        if delta_meters < 0:
            raise ValueError("delta_meters must be >= 0")
        return self._step(delta_meters, self._speed_mps)

    def __repr__(self) -> str:
        return (
            f"PositionSimulator(vehicle_id={self.vehicle_id!r}, state={self._machine.state.value!r}, "
            f"progress={self.progress:.3f})"
        )
