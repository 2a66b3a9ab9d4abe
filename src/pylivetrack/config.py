"""Runtime configuration for pylivetrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pylivetrack._constants import (
    DEFAULT_ACCURACY_METERS,
    DEFAULT_AVERAGE_SPEED_KPH,
    DEFAULT_GEOCODE_CACHE_TTL_SECONDS,
    DEFAULT_LOOKAHEAD_METERS,
    DEFAULT_MAPBOX_BASE_URL,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TOPIC_PREFIX,
    DEFAULT_POLL_FAILURE_LIMIT,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_ROUTING_PROFILE,
    DEFAULT_STALE_CHECK_INTERVAL_SECONDS,
    DEFAULT_STALE_THRESHOLD_MS,
    DEFAULT_TICK_INTERVAL_SECONDS,
)
from pylivetrack.exceptions import TrackingConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracker configuration.

    Parameters
    ----------
    mapbox_token : str or None
        Access token for the Mapbox Directions and Geocoding APIs.
        Required only when routes or addresses are resolved upstream.
    mapbox_base_url : str
        Mapbox API base URL.
    routing_profile : str
        Directions profile (``driving-traffic``, ``driving``, ...).
    geocode_country : str or None
        Optional ISO country filter for geocoding (e.g. ``"MY"``).
    route_cache_ttl : float
        Route cache time-to-live in seconds.  ``0`` keeps routes for the
        lifetime of the process, since routes between fixed points rarely
        change mid-simulation.
    geocode_cache_ttl : float
        Geocode cache time-to-live in seconds.  ``0`` disables expiry.
    http_timeout : float
        Total timeout for a single upstream HTTP call, in seconds.
    tick_interval : float
        Simulation tick interval in seconds.  Must be positive.
    average_speed_kph : float
        Default simulated vehicle speed.
    lookahead_meters : float
        Distance ahead on the route used to derive the heading.
    accuracy_meters : float
        Accuracy reported on simulated location updates.
    poll_interval : float
        Seconds between pulls once a subscription fell back to polling.
    poll_failure_limit : int
        Consecutive pull failures after which the channel is exhausted.
    stale_threshold_ms : int
        Age after which the latest update is considered stale.
    stale_check_interval : float
        Seconds between periodic staleness re-evaluations.
    mqtt_enabled : bool
        Use MQTT as the push transport (and publish simulated updates).
    mqtt_host : str or None
        MQTT broker host.
    mqtt_port : int
        MQTT broker port.
    mqtt_username : str or None
        MQTT username.
    mqtt_password : str or None
        MQTT password.
    mqtt_tls : bool
        Enable TLS towards the broker.
    mqtt_topic_prefix : str
        Topic prefix; updates for a vehicle live on ``<prefix>/<vehicleId>``.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    pull_url : str or None
        HTTP pull endpoint returning the latest update(s) for a vehicle.
        When unset the in-process snapshot store is polled instead.
    """

    mapbox_token: str | None = None
    mapbox_base_url: str = DEFAULT_MAPBOX_BASE_URL
    routing_profile: str = DEFAULT_ROUTING_PROFILE
    geocode_country: str | None = None
    route_cache_ttl: float = 0.0
    geocode_cache_ttl: float = DEFAULT_GEOCODE_CACHE_TTL_SECONDS
    http_timeout: float = 10.0
    tick_interval: float = DEFAULT_TICK_INTERVAL_SECONDS
    average_speed_kph: float = DEFAULT_AVERAGE_SPEED_KPH
    lookahead_meters: float = DEFAULT_LOOKAHEAD_METERS
    accuracy_meters: float = DEFAULT_ACCURACY_METERS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    poll_failure_limit: int = DEFAULT_POLL_FAILURE_LIMIT
    stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS
    stale_check_interval: float = DEFAULT_STALE_CHECK_INTERVAL_SECONDS
    mqtt_enabled: bool = False
    mqtt_host: str | None = None
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_topic_prefix: str = DEFAULT_MQTT_TOPIC_PREFIX
    mqtt_keepalive: int = 60
    pull_url: str | None = None

    def validate(self) -> TrackerConfig:
        """Raise :class:`TrackingConfigError` for unusable values."""
        positive = {
            "tick_interval": self.tick_interval,
            "poll_interval": self.poll_interval,
            "stale_check_interval": self.stale_check_interval,
            "average_speed_kph": self.average_speed_kph,
            "http_timeout": self.http_timeout,
        }
        for name, value in positive.items():
            if value <= 0:
                raise TrackingConfigError(f"{name} must be > 0 (got {value!r})")
        if self.lookahead_meters < 0:
            raise TrackingConfigError("lookahead_meters must be >= 0")
        if self.stale_threshold_ms < 0:
            raise TrackingConfigError("stale_threshold_ms must be >= 0")
        if self.poll_failure_limit < 1:
            raise TrackingConfigError("poll_failure_limit must be >= 1")
        if self.route_cache_ttl < 0 or self.geocode_cache_ttl < 0:
            raise TrackingConfigError("cache TTLs must be >= 0")
        if self.mqtt_enabled and not self.mqtt_host:
            raise TrackingConfigError("mqtt_enabled requires mqtt_host")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from environment variables.

        Reads ``LIVETRACK_*`` variables.  The Mapbox token also falls back
        to ``MAPBOX_SECRET_TOKEN``.  Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrackerConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "LIVETRACK_MAPBOX_BASE_URL": "mapbox_base_url",
            "LIVETRACK_ROUTING_PROFILE": "routing_profile",
            "LIVETRACK_GEOCODE_COUNTRY": "geocode_country",
            "LIVETRACK_MQTT_HOST": "mqtt_host",
            "LIVETRACK_MQTT_USERNAME": "mqtt_username",
            "LIVETRACK_MQTT_PASSWORD": "mqtt_password",
            "LIVETRACK_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
            "LIVETRACK_PULL_URL": "pull_url",
        }
        _ENV_FLOAT_MAP = {
            "LIVETRACK_ROUTE_CACHE_TTL": "route_cache_ttl",
            "LIVETRACK_GEOCODE_CACHE_TTL": "geocode_cache_ttl",
            "LIVETRACK_HTTP_TIMEOUT": "http_timeout",
            "LIVETRACK_TICK_INTERVAL": "tick_interval",
            "LIVETRACK_AVERAGE_SPEED_KPH": "average_speed_kph",
            "LIVETRACK_LOOKAHEAD_METERS": "lookahead_meters",
            "LIVETRACK_ACCURACY_METERS": "accuracy_meters",
            "LIVETRACK_POLL_INTERVAL": "poll_interval",
            "LIVETRACK_STALE_CHECK_INTERVAL": "stale_check_interval",
        }
        _ENV_INT_MAP = {
            "LIVETRACK_POLL_FAILURE_LIMIT": "poll_failure_limit",
            "LIVETRACK_STALE_THRESHOLD_MS": "stale_threshold_ms",
            "LIVETRACK_MQTT_PORT": "mqtt_port",
            "LIVETRACK_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}

        token = env.get("LIVETRACK_MAPBOX_TOKEN") or env.get("MAPBOX_SECRET_TOKEN")
        if token:
            config_kwargs["mapbox_token"] = token

        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                try:
                    config_kwargs[field_name] = float(val)
                except ValueError as exc:
                    raise TrackingConfigError(f"{env_key} must be numeric (got {val!r})") from exc

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                try:
                    config_kwargs[field_name] = int(val)
                except ValueError as exc:
                    raise TrackingConfigError(f"{env_key} must be an integer (got {val!r})") from exc

        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("LIVETRACK_MQTT_ENABLED"), False)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("LIVETRACK_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
