"""High-level async tracking service."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from typing import Any

import aiohttp

from pylivetrack._api.directions import MapboxDirectionsBackend
from pylivetrack._api.geocoding import MapboxGeocoder
from pylivetrack._mqtt import MqttPublisher, MqttPushTransport, MqttRuntime, MqttSettings
from pylivetrack._transport import AiohttpTransport
from pylivetrack.channel import HttpPullTransport, PullTransport, PushTransport, UpdateChannel
from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import TrackingError
from pylivetrack.geo import kph_to_mps
from pylivetrack.geocoding import GeocodeCache, Geocoder
from pylivetrack.models import Coordinate, LocationUpdate, RouteGeometry, VehicleState, now_ms
from pylivetrack.routing import RouteGeometryProvider, RoutingBackend, StaticRoutingBackend
from pylivetrack.session import TrackingSession
from pylivetrack.simulator import PositionSimulator
from pylivetrack.state.lifecycle import StateTransition, VehicleStateMachine
from pylivetrack.state.policy import is_stale as _is_stale
from pylivetrack.ticker import SimulationTicker

_logger = logging.getLogger(__name__)

Place = Coordinate | str


class TrackingClient:
    """Explicit tracking service: routing, simulation and update delivery.

    Usage::

        async with TrackingClient(TrackerConfig.from_env()) as client:
            await client.start_simulation("V1", "101.52,3.05", "Jalan Ampang, Kuala Lumpur")
            async with client.tracking_session() as session:
                async with session.track("V1") as subscription:
                    async for update in subscription:
                        ...

    Backends default to Mapbox (or straight-line routing when no token is
    configured), the in-process push transport, and MQTT when enabled.
    Every collaborator can be injected for tests.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        routing_backend: RoutingBackend | None = None,
        geocoder: Geocoder | None = None,
        push_transport: PushTransport | None = None,
        pull_transport: PullTransport | None = None,
        mqtt_runtime: MqttRuntime | None = None,
        publish_mqtt: bool | None = None,
        on_arrival: Callable[[PositionSimulator], None] | None = None,
        on_transition: Callable[[str, StateTransition], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = (config or TrackerConfig()).validate()
        self._external_session = session is not None
        self._http_session = session
        self._routing_backend = routing_backend
        self._geocoder = geocoder
        self._push_transport = push_transport
        self._pull_transport = pull_transport
        self._mqtt_runtime = mqtt_runtime
        self._publish_mqtt = self._config.mqtt_enabled if publish_mqtt is None else publish_mqtt
        self._on_arrival = on_arrival
        self._on_transition = on_transition
        self._clock = clock

        self._routes: RouteGeometryProvider | None = None
        self._geocodes: GeocodeCache | None = None
        self._channel: UpdateChannel | None = None
        self._ticker: SimulationTicker | None = None
        self._sessions: weakref.WeakSet[TrackingSession] = weakref.WeakSet()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TrackingClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open(self) -> None:
        """Create the HTTP session, caches, channel and ticker."""
        if self._channel is not None:
            return
        config = self._config
        loop = asyncio.get_running_loop()

        needs_http = (
            self._routing_backend is None
            or self._geocoder is None
            or (self._pull_transport is None and config.pull_url)
        )
        if needs_http and self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        http = AiohttpTransport(self._http_session, timeout=config.http_timeout) if self._http_session else None

        backend = self._routing_backend
        if backend is None:
            if config.mapbox_token and http is not None:
                backend = MapboxDirectionsBackend(
                    http,
                    config.mapbox_token,
                    base_url=config.mapbox_base_url,
                    profile=config.routing_profile,
                )
            else:
                _logger.info("No Mapbox token configured; using straight-line routes")
                backend = StaticRoutingBackend(kph_to_mps(config.average_speed_kph))
        self._routes = RouteGeometryProvider(backend, ttl=config.route_cache_ttl)

        geocoder = self._geocoder
        if geocoder is None and http is not None:
            geocoder = MapboxGeocoder(
                http,
                config.mapbox_token,
                base_url=config.mapbox_base_url,
                country=config.geocode_country,
            )
        self._geocodes = GeocodeCache(geocoder, ttl=config.geocode_cache_ttl) if geocoder is not None else None

        if self._mqtt_runtime is None and config.mqtt_enabled:
            self._mqtt_runtime = MqttRuntime(MqttSettings.from_config(config), loop=loop)

        push = self._push_transport
        if push is None and config.mqtt_enabled and self._mqtt_runtime is not None:
            push = MqttPushTransport(self._mqtt_runtime)
        pull = self._pull_transport
        if pull is None and config.pull_url and http is not None:
            pull = HttpPullTransport(http, config.pull_url)

        self._channel = UpdateChannel(
            push_transport=push,
            pull_transport=pull,
            poll_interval=config.poll_interval,
            poll_failure_limit=config.poll_failure_limit,
        )
        if self._publish_mqtt and self._mqtt_runtime is not None:
            runtime = self._mqtt_runtime
            try:
                await loop.run_in_executor(None, runtime.start)
            except TrackingError:
                _logger.warning("MQTT runtime start failed; updates will not be published", exc_info=True)
            self._channel.add_sink(MqttPublisher(runtime))

        self._ticker = SimulationTicker(
            self._channel,
            interval=config.tick_interval,
            on_arrival=self._on_arrival,
        )

    async def close(self) -> None:
        """Stop the ticker, close sessions and subscriptions, release I/O."""
        if self._ticker is not None:
            await self._ticker.stop()
        for session in list(self._sessions):
            await session.unsubscribe()
        self._sessions.clear()
        if self._channel is not None:
            await self._channel.close()
        if self._mqtt_runtime is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._mqtt_runtime.stop)
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._channel = None
        self._ticker = None
        self._routes = None
        self._geocodes = None

    def start(self) -> None:
        """Start ticking registered simulations."""
        self._require_ticker().start()

    async def stop(self) -> None:
        """Stop ticking; the in-flight tick completes first."""
        if self._ticker is not None:
            await self._ticker.stop()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_ticker(self) -> SimulationTicker:
        if self._ticker is None:
            raise TrackingError("Client not initialized. Use 'async with TrackingClient(...) as client:'")
        return self._ticker

    def _require_channel(self) -> UpdateChannel:
        if self._channel is None:
            raise TrackingError("Client not initialized. Use 'async with TrackingClient(...) as client:'")
        return self._channel

    def _require_routes(self) -> RouteGeometryProvider:
        if self._routes is None:
            raise TrackingError("Client not initialized. Use 'async with TrackingClient(...) as client:'")
        return self._routes

    async def resolve_place(self, place: Place) -> Coordinate:
        """Turn a coordinate, a ``"lon,lat"`` string or an address into a coordinate."""
        if isinstance(place, Coordinate):
            return place
        try:
            return Coordinate.parse(place)
        except ValueError:
            pass
        if self._geocodes is None:
            raise TrackingError(f"No geocoder configured to resolve {place!r}")
        result = await self._geocodes.resolve(place)
        return result.coordinate

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def channel(self) -> UpdateChannel:
        return self._require_channel()

    @property
    def ticker(self) -> SimulationTicker:
        return self._require_ticker()

    @property
    def geocode_cache(self) -> GeocodeCache | None:
        return self._geocodes

    @property
    def route_provider(self) -> RouteGeometryProvider:
        return self._require_routes()

    async def get_route(self, origin: Place, destination: Place) -> RouteGeometry:
        start = await self.resolve_place(origin)
        end = await self.resolve_place(destination)
        return await self._require_routes().get_route(start, end)

    async def start_simulation(
        self,
        vehicle_id: str,
        origin: Place,
        destination: Place,
        *,
        speed_kph: float | None = None,
        state: VehicleState = VehicleState.EN_ROUTE,
    ) -> PositionSimulator:
        """Route a vehicle and register it with the ticker.

        Raises
        ------
        RoutingError
            When no route can be obtained.  Other vehicles are unaffected.
        GeocodingError
            When an address cannot be resolved.
        """
        ticker = self._require_ticker()
        route = await self.get_route(origin, destination)
        speed = kph_to_mps(speed_kph if speed_kph is not None else self._config.average_speed_kph)

        on_transition = None
        if self._on_transition is not None:
            callback = self._on_transition

            def on_transition(record: StateTransition) -> None:
                callback(vehicle_id, record)

        machine = VehicleStateMachine(vehicle_id, state, on_transition=on_transition)
        simulator = PositionSimulator(
            vehicle_id,
            route,
            speed_mps=speed,
            lookahead_meters=self._config.lookahead_meters,
            accuracy_meters=self._config.accuracy_meters,
            machine=machine,
            clock=self._clock,
        )
        ticker.register(simulator)
        _logger.info(
            "Simulation started vehicle=%s distance=%.0fm eta=%.0fs",
            vehicle_id,
            route.total_distance_meters,
            simulator.remaining_seconds,
        )
        return simulator

    def stop_simulation(self, vehicle_id: str) -> PositionSimulator | None:
        return self._require_ticker().deregister(vehicle_id)

    def simulator(self, vehicle_id: str) -> PositionSimulator | None:
        return self._require_ticker().get(vehicle_id)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def tracking_session(self, **overrides: Any) -> TrackingSession:
        """Create a session bound to this client's channel."""
        options: dict[str, Any] = {
            "stale_threshold_ms": self._config.stale_threshold_ms,
            "stale_check_interval": self._config.stale_check_interval,
            "clock": self._clock,
        }
        options.update(overrides)
        session = TrackingSession(self._require_channel(), **options)
        self._sessions.add(session)
        return session

    def publish(self, update: LocationUpdate | dict[str, Any]) -> bool:
        return self._require_channel().publish(update)

    def get_latest_update(self, vehicle_id: str) -> LocationUpdate | None:
        return self._require_channel().get_latest_update(vehicle_id)

    def is_stale(self, vehicle_id: str, now_ms: int | None = None) -> bool:
        latest = self.get_latest_update(vehicle_id)
        now = self._clock() if now_ms is None else now_ms
        return _is_stale(now, latest.timestamp if latest is not None else None, self._config.stale_threshold_ms)
