from __future__ import annotations

import gc
import threading
from collections.abc import Sequence
from typing import Any

import pytest

from pylivetrack._mqtt import MqttSettings
from pylivetrack.client import TrackingClient
from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import GeocodingError, NoRouteFoundError, TrackingError
from pylivetrack.models import Coordinate, GeocodeResult, RouteGeometry, VehicleState
from pylivetrack.routing import StaticRoutingBackend
from pylivetrack.simulator import PositionSimulator
from pylivetrack.state.lifecycle import StateTransition

DEPOT = Coordinate(longitude=101.5, latitude=3.0)
NOWHERE = Coordinate(longitude=0.0, latitude=0.0)


class _FakeBackend:
    def __init__(self, route: RouteGeometry) -> None:
        self.route = route
        self.calls: list[tuple[Coordinate, Coordinate]] = []

    async def fetch_routes(self, waypoints: Sequence[Coordinate]) -> list[RouteGeometry]:
        self.calls.append((waypoints[0], waypoints[-1]))
        if waypoints[-1] == NOWHERE:
            return []
        return [self.route]


class _FakeGeocoder:
    def __init__(self, places: dict[str, Coordinate]) -> None:
        self.places = places
        self.queries: list[str] = []

    async def geocode(self, query: str) -> list[GeocodeResult]:
        self.queries.append(query)
        point = self.places.get(query)
        if point is None:
            return []
        return [GeocodeResult(latitude=point.latitude, longitude=point.longitude, confidence=0.9)]


def _client(config: TrackerConfig, backend: Any, clock: Any) -> TrackingClient:
    return TrackingClient(config, routing_backend=backend, geocoder=_FakeGeocoder({}), clock=clock)


@pytest.fixture
def config() -> TrackerConfig:
    # 72 kph is 20 m/s, so 100 m per 5 s tick.
    return TrackerConfig(tick_interval=5.0, average_speed_kph=72.0)


@pytest.mark.asyncio
async def test_simulated_vehicle_streams_to_session_until_arrival(config, short_route, clock) -> None:
    arrivals: list[PositionSimulator] = []
    transitions: list[tuple[str, VehicleState]] = []

    def on_transition(vehicle_id: str, record: StateTransition) -> None:
        transitions.append((vehicle_id, record.target))

    backend = _FakeBackend(short_route)
    geocoder = _FakeGeocoder({"Warehouse 9": short_route.destination})
    async with TrackingClient(
        config,
        routing_backend=backend,
        geocoder=geocoder,
        on_arrival=arrivals.append,
        on_transition=on_transition,
        clock=clock,
    ) as client:
        simulator = await client.start_simulation("V1", "101.5,3.0", "Warehouse 9")
        assert client.ticker.vehicle_ids == ["V1"]
        assert simulator.speed_mps == pytest.approx(20.0)
        assert geocoder.queries == ["Warehouse 9"]

        async with client.tracking_session() as session:
            subscription = await session.subscribe("V1")
            received = []
            for _ in range(20):
                clock.advance(5_000)
                client.ticker.tick()
                update = await subscription.next_update(timeout=1.0)
                assert update is not None
                received.append(update)
                if arrivals:
                    break

            # 1000 m at 100 m per tick.
            assert 10 <= len(received) <= 11
            timestamps = [update.timestamp for update in received]
            assert timestamps == sorted(timestamps)
            last = received[-1]
            assert (last.latitude, last.longitude) == pytest.approx(
                (short_route.destination.latitude, short_route.destination.longitude)
            )
            assert session.display_state == "live"
            assert client.get_latest_update("V1") == last

        assert arrivals == [simulator]
        assert simulator.machine.state is VehicleState.ARRIVED_AT_DROPOFF
        assert transitions == [("V1", VehicleState.ARRIVED_AT_DROPOFF)]
        assert client.ticker.vehicle_ids == []
        assert client.simulator("V1") is None


@pytest.mark.asyncio
async def test_routing_failure_only_affects_that_vehicle(config, short_route, clock) -> None:
    async with _client(config, _FakeBackend(short_route), clock) as client:
        await client.start_simulation("V1", DEPOT, short_route.destination)
        with pytest.raises(NoRouteFoundError):
            await client.start_simulation("V2", DEPOT, NOWHERE)
        with pytest.raises(GeocodingError):
            await client.start_simulation("V3", DEPOT, "Unknown Street 404")

        assert client.ticker.vehicle_ids == ["V1"]
        assert client.ticker.tick() == 1


@pytest.mark.asyncio
async def test_routes_are_cached_per_pair(config, short_route, clock) -> None:
    backend = _FakeBackend(short_route)
    async with _client(config, backend, clock) as client:
        await client.start_simulation("V1", DEPOT, short_route.destination)
        await client.start_simulation("V2", DEPOT, short_route.destination)
        assert len(backend.calls) == 1
        assert client.route_provider.cached(DEPOT, short_route.destination) is short_route


@pytest.mark.asyncio
async def test_idle_vehicle_is_not_ticked(config, short_route, clock) -> None:
    async with _client(config, _FakeBackend(short_route), clock) as client:
        simulator = await client.start_simulation("V1", DEPOT, short_route.destination, state=VehicleState.IDLE)
        assert client.ticker.tick() == 0
        assert client.get_latest_update("V1") is None

        simulator.machine.advance_to(VehicleState.EN_ROUTE)
        assert client.ticker.tick() == 1


@pytest.mark.asyncio
async def test_staleness_on_client(config, clock) -> None:
    async with _client(config, StaticRoutingBackend(20.0), clock) as client:
        assert client.is_stale("V1") is True
        client.publish({"vehicleId": "V1", "latitude": 3.0, "longitude": 101.5, "timestamp": clock.now})
        assert client.is_stale("V1") is False
        assert client.is_stale("V1", now_ms=clock.now + 31_000) is True


@pytest.mark.asyncio
async def test_requires_open(config) -> None:
    client = TrackingClient(config, routing_backend=StaticRoutingBackend(20.0), geocoder=_FakeGeocoder({}))
    with pytest.raises(TrackingError):
        client.ticker
    await client.open()
    assert client.ticker.interval == 5.0
    await client.close()
    with pytest.raises(TrackingError):
        client.channel


@pytest.mark.asyncio
async def test_released_sessions_are_not_retained(config, clock) -> None:
    async with _client(config, StaticRoutingBackend(20.0), clock) as client:
        for vehicle_id in ("V1", "V2", "V3"):
            async with client.tracking_session() as session:
                await session.subscribe(vehicle_id)
        del session
        gc.collect()
        assert len(client._sessions) == 0

        kept = client.tracking_session()
        await kept.subscribe("V4")
    assert kept.subscription is None


class _RecordingRuntime:
    """Stands in for the MQTT runtime; records which thread starts and stops it."""

    def __init__(self) -> None:
        self.is_running = False
        self.threads: list[tuple[str, int]] = []
        self.settings = MqttSettings(host="broker.local")
        self.published: list[tuple[str, bytes]] = []

    def start(self) -> None:
        self.threads.append(("start", threading.get_ident()))
        self.is_running = True

    def stop(self) -> None:
        self.threads.append(("stop", threading.get_ident()))
        self.is_running = False

    def publish(self, topic: str, payload: bytes, *, qos: int = 0) -> None:
        self.published.append((topic, payload))


@pytest.mark.asyncio
async def test_mqtt_publisher_runtime_is_managed_off_loop(config, clock) -> None:
    runtime = _RecordingRuntime()
    loop_thread = threading.get_ident()
    client = TrackingClient(
        config,
        routing_backend=StaticRoutingBackend(20.0),
        geocoder=_FakeGeocoder({}),
        mqtt_runtime=runtime,  # type: ignore[arg-type]
        publish_mqtt=True,
        clock=clock,
    )
    async with client:
        assert runtime.is_running
        client.publish({"vehicleId": "V1", "latitude": 3.0, "longitude": 101.5, "timestamp": clock.now})
        assert [topic for topic, _ in runtime.published] == ["active_vehicles/V1"]

    assert [name for name, _ in runtime.threads] == ["start", "stop"]
    assert all(thread != loop_thread for _, thread in runtime.threads)
