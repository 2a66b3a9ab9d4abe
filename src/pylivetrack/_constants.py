"""Shared constants for pylivetrack."""

from __future__ import annotations

USER_AGENT = "pylivetrack/1.0 (+aiohttp)"

#: Mean earth radius in meters (IUGG), matches common haversine implementations.
EARTH_RADIUS_METERS = 6_371_008.8

DEFAULT_MAPBOX_BASE_URL = "https://api.mapbox.com"
DEFAULT_ROUTING_PROFILE = "driving-traffic"

DEFAULT_TICK_INTERVAL_SECONDS = 5.0
DEFAULT_AVERAGE_SPEED_KPH = 70.0
DEFAULT_LOOKAHEAD_METERS = 50.0
DEFAULT_ACCURACY_METERS = 10.0

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_POLL_FAILURE_LIMIT = 3

#: Undelivered updates kept per subscription; the oldest is dropped first.
DEFAULT_SUBSCRIPTION_BUFFER = 16

DEFAULT_STALE_THRESHOLD_MS = 30_000
DEFAULT_STALE_CHECK_INTERVAL_SECONDS = 5.0

#: Geocoding results rarely change; one day keeps repeated lookups cheap.
DEFAULT_GEOCODE_CACHE_TTL_SECONDS = 24 * 3600.0

DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TOPIC_PREFIX = "active_vehicles"

#: Vehicle id used by the simulation CLI when none is given.
DEFAULT_CLI_VEHICLE_ID = "MOCK_ENROUTE_002"

#: Coordinate cache keys are rounded to ~0.1 m.
COORDINATE_KEY_PRECISION = 6

METERS_PER_SECOND_PER_KPH = 1000.0 / 3600.0
