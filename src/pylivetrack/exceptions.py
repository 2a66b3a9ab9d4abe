"""Custom exception hierarchy for pylivetrack."""

from __future__ import annotations


class TrackingError(Exception):
    """Base exception for all pylivetrack errors."""


class TrackingConfigError(TrackingError):
    """Invalid or missing configuration."""


class TrackingTransportError(TrackingError):
    """Transport-level failure (network, non-200, invalid JSON, broker)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RoutingError(TrackingError):
    """A route between two coordinates could not be obtained."""


class NoRouteFoundError(RoutingError):
    """The routing backend answered with zero routes.

    This is a valid backend response meaning "no route", not an outage.
    """


class RoutingBackendUnavailableError(RoutingError):
    """The routing backend call failed (network, timeout, HTTP error).

    Failed lookups are never cached; the next call retries upstream.
    """


class GeocodingError(TrackingError):
    """The upstream geocoder failed for a free-text address."""


class InvalidTransitionError(TrackingError):
    """A lifecycle transition that the state machine does not allow.

    The state machine is left unchanged when this is raised.
    """

    def __init__(self, current: object, target: object) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition {current} -> {target}")


class ChannelUnavailableError(TrackingError):
    """Both the push and the pull transport are exhausted for a subscription."""

    def __init__(self, vehicle_id: str, reason: str) -> None:
        self.vehicle_id = vehicle_id
        self.reason = reason
        super().__init__(f"Channel unavailable for {vehicle_id}: {reason}")


class InvalidLocationUpdateError(TrackingError):
    """A location update is missing its vehicle id or coordinates.

    Never raised into the simulation loop: callers at the channel boundary
    log and drop the offending update.
    """
