"""pylivetrack - Async vehicle position simulation and live tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylivetrack")
except PackageNotFoundError:
    __version__ = "0+local"
from pylivetrack.channel import (
    HttpPullTransport,
    LocalPullTransport,
    LocalPushTransport,
    Subscription,
    SubscriptionStatus,
    TransportMode,
    UpdateChannel,
)
from pylivetrack.client import TrackingClient
from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import (
    ChannelUnavailableError,
    GeocodingError,
    InvalidLocationUpdateError,
    InvalidTransitionError,
    NoRouteFoundError,
    RoutingBackendUnavailableError,
    RoutingError,
    TrackingConfigError,
    TrackingError,
    TrackingTransportError,
)
from pylivetrack.geocoding import GeocodeCache
from pylivetrack.models import (
    Coordinate,
    GeocodeCacheEntry,
    GeocodeResult,
    LocationUpdate,
    RouteGeometry,
    ShipmentStatus,
    SimulatedVehicle,
    VehicleState,
)
from pylivetrack.routing import RouteGeometryProvider
from pylivetrack.session import TrackingSession
from pylivetrack.simulator import PositionSimulator, TickResult, advance_vehicle
from pylivetrack.state.lifecycle import StateTransition, VehicleStateMachine
from pylivetrack.state.store import SnapshotStore
from pylivetrack.ticker import SimulationTicker

__all__ = [
    "__version__",
    "ChannelUnavailableError",
    "Coordinate",
    "GeocodeCache",
    "GeocodeCacheEntry",
    "GeocodeResult",
    "GeocodingError",
    "HttpPullTransport",
    "InvalidLocationUpdateError",
    "InvalidTransitionError",
    "LocalPullTransport",
    "LocalPushTransport",
    "LocationUpdate",
    "NoRouteFoundError",
    "PositionSimulator",
    "RouteGeometry",
    "RouteGeometryProvider",
    "RoutingBackendUnavailableError",
    "RoutingError",
    "ShipmentStatus",
    "SimulatedVehicle",
    "SimulationTicker",
    "SnapshotStore",
    "StateTransition",
    "Subscription",
    "SubscriptionStatus",
    "TickResult",
    "TrackerConfig",
    "TrackingClient",
    "TrackingConfigError",
    "TrackingError",
    "TrackingSession",
    "TrackingTransportError",
    "TransportMode",
    "UpdateChannel",
    "VehicleState",
    "VehicleStateMachine",
    "advance_vehicle",
]
