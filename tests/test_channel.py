from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pylivetrack.channel import (
    HttpPullTransport,
    Subscription,
    SubscriptionStatus,
    TransportMode,
    UpdateChannel,
)
from pylivetrack.exceptions import ChannelUnavailableError, TrackingTransportError
from pylivetrack.models import LocationUpdate


def _payload(ts: int, lat: float = 1.0, vehicle_id: str = "V1") -> dict[str, Any]:
    return {"vehicleId": vehicle_id, "latitude": lat, "longitude": lat, "timestamp": ts}


class _ScriptedPull:
    """Pull transport returning queued responses (or raising queued errors)."""

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls = 0

    async def fetch(self, vehicle_id: str) -> Any:
        self.calls += 1
        if not self.responses:
            return None
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class _FailingPull:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch(self, vehicle_id: str) -> Any:
        self.calls += 1
        raise TrackingTransportError("HTTP 503", status_code=503, endpoint="/pull")


class _RefusingPush:
    async def connect(self, vehicle_id: str, on_message: Any, on_error: Any) -> Any:
        raise TrackingTransportError("connection refused", endpoint="ws://")


class _RecordingHttp:
    def __init__(self, body: Any) -> None:
        self.body = body
        self.requests: list[tuple[str, dict[str, Any]]] = []

    async def get_json(self, url: str, params: Any = None) -> Any:
        self.requests.append((url, dict(params or {})))
        return self.body


def test_publish_overwrites_snapshot_and_rejects_older() -> None:
    channel = UpdateChannel()
    assert channel.publish(_payload(100, lat=1.0))
    assert channel.publish(_payload(200, lat=2.0))
    assert not channel.publish(_payload(150, lat=9.0))
    latest = channel.get_latest_update("V1")
    assert latest is not None
    assert (latest.timestamp, latest.latitude) == (200, 2.0)


def test_publish_drops_invalid_updates() -> None:
    channel = UpdateChannel()
    assert channel.publish({"vehicleId": "V1", "latitude": 1}) is False
    assert channel.publish("garbage") is False
    assert channel.get_latest_update("V1") is None


def test_sink_failure_does_not_block_publish() -> None:
    seen: list[LocationUpdate] = []

    def broken(_update: LocationUpdate) -> None:
        raise RuntimeError("sink down")

    channel = UpdateChannel(sinks=[broken, seen.append])
    assert channel.publish(_payload(1))
    assert [u.timestamp for u in seen] == [1]


@pytest.mark.asyncio
async def test_subscribe_receives_only_later_publishes() -> None:
    channel = UpdateChannel()
    channel.publish(_payload(100, lat=1.0))

    subscription = await channel.subscribe("V1")
    assert subscription.status is SubscriptionStatus.ACTIVE
    assert subscription.transport is TransportMode.PUSH

    channel.publish(_payload(200, lat=2.0))
    update = await subscription.next_update(timeout=1.0)
    assert update is not None and update.timestamp == 200
    assert await subscription.next_update(timeout=0.01) is None
    assert subscription.last_update == update
    latest = channel.get_latest_update("V1")
    assert latest is not None and latest.timestamp == 200
    await subscription.close()


@pytest.mark.asyncio
async def test_updates_for_other_vehicles_are_not_delivered() -> None:
    channel = UpdateChannel()
    subscription = await channel.subscribe("V1")
    channel.publish(_payload(10, vehicle_id="V2"))
    channel.publish(_payload(11, vehicle_id="V1"))
    update = await subscription.next_update(timeout=1.0)
    assert update is not None and update.vehicle_id == "V1"
    await subscription.close()


@pytest.mark.asyncio
async def test_push_path_discards_out_of_order_messages() -> None:
    channel = UpdateChannel()
    subscription = await channel.subscribe("V1")
    subscription._on_push_message(_payload(300))  # type: ignore[attr-defined]
    subscription._on_push_message(_payload(250))  # type: ignore[attr-defined]
    subscription._on_push_message(_payload(300))  # type: ignore[attr-defined]
    got = [await subscription.next_update(timeout=0.1) for _ in range(3)]
    assert [u.timestamp if u else None for u in got] == [300, 300, None]
    await subscription.close()


@pytest.mark.asyncio
async def test_async_iteration_ends_on_close() -> None:
    channel = UpdateChannel()
    subscription = await channel.subscribe("V1")
    channel.publish(_payload(1))
    channel.publish(_payload(2))

    received: list[int] = []

    async def consume() -> None:
        async for update in subscription:
            received.append(update.timestamp)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    await subscription.close()
    await asyncio.wait_for(task, timeout=1.0)
    assert received == [1, 2]
    assert subscription.status is SubscriptionStatus.IDLE
    assert channel.subscriptions == []


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    channel = UpdateChannel()
    subscription = await channel.subscribe("V1")
    await subscription.close()
    await subscription.close()
    assert channel.local_push.connection_count("V1") == 0


@pytest.mark.asyncio
async def test_push_connect_failure_falls_back_to_pull() -> None:
    pull = _ScriptedPull([None, _payload(100), [_payload(100), _payload(90), _payload(200)]])
    channel = UpdateChannel(push_transport=_RefusingPush(), pull_transport=pull, poll_interval=0.01)

    subscription = await channel.subscribe("V1")
    assert subscription.transport is TransportMode.PULL
    assert subscription.status is SubscriptionStatus.ACTIVE

    first = await subscription.next_update(timeout=1.0)
    second = await subscription.next_update(timeout=1.0)
    assert first is not None and first.timestamp == 100
    # Duplicate 100 and out-of-order 90 are dropped on the pull path.
    assert second is not None and second.timestamp == 200
    await subscription.close()


@pytest.mark.asyncio
async def test_pull_skips_snapshot_present_at_subscribe_time() -> None:
    channel = UpdateChannel(poll_interval=0.01)
    channel.local_push.available = False
    channel.publish(_payload(100))

    subscription = await channel.subscribe("V1")
    assert subscription.transport is TransportMode.PULL
    assert await subscription.next_update(timeout=0.05) is None

    channel.publish(_payload(200))
    update = await subscription.next_update(timeout=1.0)
    assert update is not None and update.timestamp == 200
    await subscription.close()


@pytest.mark.asyncio
async def test_push_error_after_connect_falls_back_once() -> None:
    channel = UpdateChannel(poll_interval=0.01)
    subscription = await channel.subscribe("V1")
    assert subscription.transport is TransportMode.PUSH

    channel.local_push.fail("V1", "socket closed")
    channel.local_push.fail("V1", "socket closed again")
    assert subscription.transport is TransportMode.PULL
    assert channel.local_push.connection_count("V1") == 0

    channel.publish(_payload(5))
    update = await subscription.next_update(timeout=1.0)
    assert update is not None and update.timestamp == 5
    await subscription.close()


@pytest.mark.asyncio
async def test_no_pull_transport_enters_error() -> None:
    channel = UpdateChannel(push_transport=_RefusingPush(), local_pull=False)
    subscription = await channel.subscribe("V1")
    assert subscription.status is SubscriptionStatus.ERROR
    assert subscription.error is not None and "connection refused" in subscription.error

    with pytest.raises(ChannelUnavailableError) as excinfo:
        async for _update in subscription:
            pass
    assert excinfo.value.vehicle_id == "V1"
    with pytest.raises(ChannelUnavailableError):
        await subscription.next_update(timeout=0.1)
    await subscription.close()
    assert subscription.status is SubscriptionStatus.ERROR


@pytest.mark.asyncio
async def test_repeated_poll_failures_exhaust_channel() -> None:
    pull = _FailingPull()
    channel = UpdateChannel(
        push_transport=_RefusingPush(),
        pull_transport=pull,
        poll_interval=0.01,
        poll_failure_limit=3,
    )
    subscription = await channel.subscribe("V1")
    with pytest.raises(ChannelUnavailableError):
        await subscription.next_update(timeout=1.0)
    assert pull.calls == 3
    assert subscription.status is SubscriptionStatus.ERROR
    assert "503" in (subscription.error or "")
    await subscription.close()


@pytest.mark.asyncio
async def test_poll_failure_counter_resets_on_success() -> None:
    error = TrackingTransportError("timeout")
    pull = _ScriptedPull([error, error, None, error, error, _payload(7)])
    channel = UpdateChannel(
        push_transport=_RefusingPush(),
        pull_transport=pull,
        poll_interval=0.01,
        poll_failure_limit=3,
    )
    subscription = await channel.subscribe("V1")
    update = await subscription.next_update(timeout=1.0)
    assert update is not None and update.timestamp == 7
    assert subscription.status is SubscriptionStatus.ACTIVE
    await subscription.close()


@pytest.mark.asyncio
async def test_http_pull_transport_sends_vehicle_and_shipment_ids() -> None:
    http = _RecordingHttp([_payload(1)])
    transport = HttpPullTransport(http, "https://tracker.example/api/location", shipment_ids={"V1": "SHP-9"})
    body = await transport.fetch("V1")
    assert body == [_payload(1)]
    assert http.requests == [("https://tracker.example/api/location", {"vehicleId": "V1", "shipmentId": "SHP-9"})]

    await transport.fetch("V2")
    assert http.requests[-1][1] == {"vehicleId": "V2", "shipmentId": None}


@pytest.mark.asyncio
async def test_subscribe_rejects_blank_vehicle_id() -> None:
    with pytest.raises(ValueError):
        await UpdateChannel().subscribe("  ")


@pytest.mark.asyncio
async def test_slow_reader_keeps_only_newest_updates() -> None:
    channel = UpdateChannel(subscription_buffer=4)
    subscription = await channel.subscribe("V1")
    for ts in range(1, 11):
        channel.publish(_payload(ts))

    assert subscription.backlog == 4
    assert subscription.last_update is not None and subscription.last_update.timestamp == 10
    got = [await subscription.next_update(timeout=0.1) for _ in range(4)]
    assert [u.timestamp for u in got if u is not None] == [7, 8, 9, 10]

    await subscription.close()
    assert await subscription.next_update(timeout=0.1) is None


def test_subscription_buffer_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Subscription("V1", push=None, pull=None, buffer_size=0)
