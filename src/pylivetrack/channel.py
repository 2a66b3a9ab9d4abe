"""Update channel: latest-snapshot fan-out with push-first, pull-fallback delivery.

Publishers overwrite the per-vehicle snapshot; subscribers receive every
update published after they subscribed.  Each subscription starts on the
push transport and falls back to periodic polling when push fails.  Only
when polling is exhausted too does the subscription report an error.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import Any, Protocol

from pylivetrack._constants import (
    DEFAULT_POLL_FAILURE_LIMIT,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SUBSCRIPTION_BUFFER,
)
from pylivetrack._transport import HttpTransport
from pylivetrack.exceptions import (
    ChannelUnavailableError,
    InvalidLocationUpdateError,
    TrackingTransportError,
)
from pylivetrack.models import LocationUpdate, parse_location_payload, parse_location_update
from pylivetrack.state.policy import should_accept_update
from pylivetrack.state.store import SnapshotStore

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]
ErrorHandler = Callable[[str], None]
UpdateSink = Callable[[LocationUpdate], None]
UpdateListener = Callable[[LocationUpdate], None]


class TransportMode(StrEnum):
    PUSH = "push"
    PULL = "pull"


class SubscriptionStatus(StrEnum):
    IDLE = "Idle"
    SUBSCRIBING = "Subscribing"
    ACTIVE = "Active"
    ERROR = "Error"


# ----------------------------------------------------------------------
# Transport protocols
# ----------------------------------------------------------------------


class PushConnection(Protocol):
    def close(self) -> None:
        ...


class PushTransport(Protocol):
    """Event-driven transport.

    ``connect`` raises when the connection cannot be established; later
    failures are reported through *on_error*.  Messages may be raw JSON,
    dicts, lists or :class:`LocationUpdate` objects.
    """

    async def connect(
        self,
        vehicle_id: str,
        on_message: MessageHandler,
        on_error: ErrorHandler,
    ) -> PushConnection:
        ...


class PullTransport(Protocol):
    """Request/response transport returning one update, an array, or ``None``."""

    async def fetch(self, vehicle_id: str) -> Any:
        ...


# ----------------------------------------------------------------------
# In-process transports
# ----------------------------------------------------------------------


class _LocalConnection:
    def __init__(
        self,
        owner: LocalPushTransport,
        vehicle_id: str,
        on_message: MessageHandler,
        on_error: ErrorHandler,
    ) -> None:
        self._owner = owner
        self.vehicle_id = vehicle_id
        self.on_message = on_message
        self.on_error = on_error

    def close(self) -> None:
        self._owner._remove(self)


class LocalPushTransport:
    """In-process push transport fed directly by :meth:`UpdateChannel.publish`.

    ``available`` can be switched off to make new connections fail, and
    :meth:`fail` reports an error to live connections; both exist so the
    fallback path can be driven without a broker.
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[_LocalConnection]] = {}
        self.available = True

    async def connect(
        self,
        vehicle_id: str,
        on_message: MessageHandler,
        on_error: ErrorHandler,
    ) -> _LocalConnection:
        if not self.available:
            raise TrackingTransportError("Local push transport unavailable", endpoint="local")
        connection = _LocalConnection(self, vehicle_id, on_message, on_error)
        self._connections.setdefault(vehicle_id, []).append(connection)
        return connection

    def _remove(self, connection: _LocalConnection) -> None:
        listeners = self._connections.get(connection.vehicle_id)
        if not listeners:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(connection)
        if not listeners:
            del self._connections[connection.vehicle_id]

    def deliver(self, update: LocationUpdate) -> None:
        for connection in list(self._connections.get(update.vehicle_id, ())):
            try:
                connection.on_message(update)
            except Exception:
                _logger.debug("Push listener failed vehicle=%s", update.vehicle_id, exc_info=True)

    def fail(self, vehicle_id: str, reason: str) -> None:
        """Report a push error to every connection for *vehicle_id*."""
        for connection in list(self._connections.get(vehicle_id, ())):
            connection.on_error(reason)

    def connection_count(self, vehicle_id: str) -> int:
        return len(self._connections.get(vehicle_id, ()))


class LocalPullTransport:
    """Pull transport reading the channel's own snapshot store."""

    def __init__(self, store: SnapshotStore) -> None:
        self._store = store

    async def fetch(self, vehicle_id: str) -> LocationUpdate | None:
        return self._store.get(vehicle_id)


class HttpPullTransport:
    """Pull transport polling an HTTP endpoint.

    ``GET {url}?vehicleId=...[&shipmentId=...]``; the body is a single
    update object or an array of updates.
    """

    def __init__(
        self,
        transport: HttpTransport,
        url: str,
        *,
        shipment_ids: Mapping[str, str] | None = None,
    ) -> None:
        self._transport = transport
        self._url = url
        self._shipment_ids = dict(shipment_ids or {})

    async def fetch(self, vehicle_id: str) -> Any:
        params = {"vehicleId": vehicle_id, "shipmentId": self._shipment_ids.get(vehicle_id)}
        return await self._transport.get_json(self._url, params)


# ----------------------------------------------------------------------
# Subscription
# ----------------------------------------------------------------------


class _Marker:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


_CLOSED = _Marker("<closed>")
_FAILED = _Marker("<failed>")


class Subscription:
    """A live stream of updates for one vehicle.

    Iterate with ``async for update in subscription``.  Iteration ends when
    the subscription is closed and raises :class:`ChannelUnavailableError`
    once both transports are exhausted.

    At most *buffer_size* undelivered updates are kept; when a consumer
    falls behind (or only reads :attr:`last_update`) the oldest are dropped.
    """

    def __init__(
        self,
        vehicle_id: str,
        *,
        push: PushTransport | None,
        pull: PullTransport | None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        poll_failure_limit: int = DEFAULT_POLL_FAILURE_LIMIT,
        baseline_timestamp: int | None = None,
        on_close: Callable[[Subscription], None] | None = None,
        buffer_size: int = DEFAULT_SUBSCRIPTION_BUFFER,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        self._vehicle_id = vehicle_id
        self._push = push
        self._pull = pull
        self._poll_interval = poll_interval
        self._poll_failure_limit = poll_failure_limit
        # Updates at or before the snapshot seen at subscribe time are history.
        self._last_timestamp = baseline_timestamp
        self._on_close = on_close
        self._queue: asyncio.Queue[LocationUpdate | _Marker] = asyncio.Queue(maxsize=buffer_size)
        self._listeners: list[UpdateListener] = []
        self._connection: PushConnection | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._status = SubscriptionStatus.IDLE
        self._transport: TransportMode | None = None
        self._last_update: LocationUpdate | None = None
        self._error: str | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def vehicle_id(self) -> str:
        return self._vehicle_id

    @property
    def status(self) -> SubscriptionStatus:
        return self._status

    @property
    def transport(self) -> TransportMode | None:
        return self._transport

    @property
    def last_update(self) -> LocationUpdate | None:
        return self._last_update

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def backlog(self) -> int:
        """Items waiting to be read from the stream."""
        return self._queue.qsize()

    def add_listener(self, listener: UpdateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Transport selection
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Connect the push transport, falling back to pull on failure."""
        self._status = SubscriptionStatus.SUBSCRIBING
        if self._push is None:
            self._fall_back("no push transport configured")
            return
        try:
            connection = await self._push.connect(self._vehicle_id, self._on_push_message, self._on_push_error)
        except Exception as exc:
            _logger.debug("Push connect failed vehicle=%s", self._vehicle_id, exc_info=True)
            self._fall_back(f"push connect failed: {exc}")
            return
        if self._closed:
            connection.close()
            return
        self._connection = connection
        self._transport = TransportMode.PUSH
        self._status = SubscriptionStatus.ACTIVE
        _logger.debug("Subscribed vehicle=%s via push", self._vehicle_id)

    def _fall_back(self, reason: str) -> None:
        """Single transition from push to pull (or to ERROR when pull is unavailable)."""
        if self._closed or self._status == SubscriptionStatus.ERROR:
            return
        if self._transport == TransportMode.PULL:
            return
        self._close_connection()
        if self._pull is None:
            self._fail(f"{reason}; no pull transport configured")
            return
        _logger.warning("Vehicle %s falling back to polling: %s", self._vehicle_id, reason)
        self._transport = TransportMode.PULL
        self._status = SubscriptionStatus.ACTIVE
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    def _fail(self, reason: str) -> None:
        self._status = SubscriptionStatus.ERROR
        self._error = reason
        self._close_connection()
        _logger.warning("Channel unavailable for vehicle %s: %s", self._vehicle_id, reason)
        self._enqueue(_FAILED)

    def _enqueue(self, item: LocationUpdate | _Marker) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
            except asyncio.QueueFull:
                dropped = self._queue.get_nowait()
                _logger.debug("Subscription buffer full vehicle=%s dropped=%r", self._vehicle_id, dropped)
            else:
                return

    def _close_connection(self) -> None:
        connection = self._connection
        self._connection = None
        if connection is None:
            return
        try:
            connection.close()
        except Exception:
            _logger.debug("Push connection close failed", exc_info=True)

    async def _poll_loop(self) -> None:
        assert self._pull is not None  # noqa: S101
        failures = 0
        while not self._closed:
            try:
                payload = await self._pull.fetch(self._vehicle_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failures += 1
                _logger.debug(
                    "Poll attempt failed vehicle=%s failures=%d",
                    self._vehicle_id,
                    failures,
                    exc_info=True,
                )
                if failures >= self._poll_failure_limit:
                    self._fail(f"pull failed {failures} time(s) in a row: {exc}")
                    return
            else:
                failures = 0
                updates = parse_location_payload(payload)
                for update in sorted(updates, key=lambda item: item.timestamp):
                    self._accept(update, allow_equal=False)
            await asyncio.sleep(self._poll_interval)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _on_push_message(self, payload: Any) -> None:
        for update in parse_location_payload(payload):
            self._accept(update, allow_equal=True)

    def _on_push_error(self, reason: str) -> None:
        self._fall_back(f"push error: {reason}")

    def _accept(self, update: LocationUpdate, *, allow_equal: bool) -> bool:
        if self._closed or self._status == SubscriptionStatus.ERROR:
            return False
        if update.vehicle_id != self._vehicle_id:
            _logger.debug("Discarding update for %s on subscription %s", update.vehicle_id, self._vehicle_id)
            return False
        if not should_accept_update(
            cached_timestamp=self._last_timestamp,
            incoming_timestamp=update.timestamp,
            allow_equal=allow_equal,
        ):
            _logger.debug(
                "Discarding stale update vehicle=%s ts=%s last=%s",
                self._vehicle_id,
                update.timestamp,
                self._last_timestamp,
            )
            return False
        self._last_timestamp = update.timestamp
        self._last_update = update
        self._enqueue(update)
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                _logger.debug("Subscription listener failed", exc_info=True)
        return True

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> LocationUpdate:
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker so every later read ends too.
            self._enqueue(_CLOSED)
            raise StopAsyncIteration
        if item is _FAILED:
            self._enqueue(_FAILED)
            raise ChannelUnavailableError(self._vehicle_id, self._error or "unknown")
        assert isinstance(item, LocationUpdate)  # noqa: S101
        return item

    async def next_update(self, timeout: float | None = None) -> LocationUpdate | None:
        """Wait for the next update.

        Returns ``None`` on timeout or when the subscription is closed.

        Raises
        ------
        ChannelUnavailableError
            When both transports are exhausted.
        """
        try:
            return await asyncio.wait_for(self.__anext__(), timeout=timeout)
        except (asyncio.TimeoutError, StopAsyncIteration):
            return None

    async def close(self) -> None:
        """Release the transports.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._close_connection()
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._status != SubscriptionStatus.ERROR:
            self._status = SubscriptionStatus.IDLE
        self._enqueue(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)
        _logger.debug("Subscription closed vehicle=%s", self._vehicle_id)

    def __repr__(self) -> str:
        return (
            f"Subscription(vehicle_id={self._vehicle_id!r}, status={self._status.value!r}, "
            f"transport={self._transport.value if self._transport else None!r})"
        )


# ----------------------------------------------------------------------
# Channel
# ----------------------------------------------------------------------


class UpdateChannel:
    """Per-vehicle latest snapshot plus subscription fan-out.

    Parameters
    ----------
    store : SnapshotStore, optional
        Shared latest-snapshot store.  A private one is created if omitted.
    push_transport : PushTransport, optional
        Push transport for subscriptions.  Defaults to the in-process
        transport fed by :meth:`publish`.
    pull_transport : PullTransport, optional
        Pull transport used after a push failure.  Defaults to reading the
        snapshot store unless *local_pull* is ``False``.
    local_pull : bool
        Whether to fall back to the snapshot store when no pull transport
        is given.
    poll_interval : float
        Seconds between polls on the pull path.
    poll_failure_limit : int
        Consecutive poll failures that exhaust the pull transport.
    sinks : iterable of callables
        Extra outputs for accepted updates (e.g. an MQTT publisher).
    subscription_buffer : int
        Undelivered updates kept per subscription before the oldest is dropped.
    """

    def __init__(
        self,
        *,
        store: SnapshotStore | None = None,
        push_transport: PushTransport | None = None,
        pull_transport: PullTransport | None = None,
        local_pull: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        poll_failure_limit: int = DEFAULT_POLL_FAILURE_LIMIT,
        sinks: Iterable[UpdateSink] = (),
        subscription_buffer: int = DEFAULT_SUBSCRIPTION_BUFFER,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if poll_failure_limit < 1:
            raise ValueError("poll_failure_limit must be >= 1")
        self._store = store if store is not None else SnapshotStore()
        self._local_push = LocalPushTransport()
        self._push: PushTransport = push_transport if push_transport is not None else self._local_push
        if pull_transport is None and local_pull:
            pull_transport = LocalPullTransport(self._store)
        self._pull = pull_transport
        self._poll_interval = poll_interval
        self._poll_failure_limit = poll_failure_limit
        self._sinks: list[UpdateSink] = list(sinks)
        self._subscription_buffer = subscription_buffer
        self._subscriptions: list[Subscription] = []

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def local_push(self) -> LocalPushTransport:
        return self._local_push

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def add_sink(self, sink: UpdateSink) -> None:
        self._sinks.append(sink)

    def publish(self, update: LocationUpdate | Mapping[str, Any] | str | bytes) -> bool:
        """Overwrite the snapshot for the update's vehicle and fan it out.

        Invalid payloads and updates older than the current snapshot are
        logged and dropped.

        Returns
        -------
        bool
            ``True`` when the update was accepted.
        """
        try:
            parsed = parse_location_update(update)
        except InvalidLocationUpdateError as exc:
            _logger.warning("Dropping invalid update on publish: %s", exc)
            return False

        if not self._store.apply(parsed):
            return False

        self._local_push.deliver(parsed)
        for sink in list(self._sinks):
            try:
                sink(parsed)
            except Exception:
                _logger.warning("Update sink failed vehicle=%s", parsed.vehicle_id, exc_info=True)
        return True

    def get_latest_update(self, vehicle_id: str) -> LocationUpdate | None:
        return self._store.get(vehicle_id)

    async def subscribe(self, vehicle_id: str) -> Subscription:
        """Open a subscription receiving every update published from now on."""
        vehicle_id = vehicle_id.strip()
        if not vehicle_id:
            raise ValueError("vehicle_id must be non-empty")
        current = self._store.get(vehicle_id)
        subscription = Subscription(
            vehicle_id,
            push=self._push,
            pull=self._pull,
            poll_interval=self._poll_interval,
            poll_failure_limit=self._poll_failure_limit,
            baseline_timestamp=current.timestamp if current is not None else None,
            on_close=self._forget,
            buffer_size=self._subscription_buffer,
        )
        self._subscriptions.append(subscription)
        await subscription.open()
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)

    async def close(self) -> None:
        """Close every open subscription."""
        for subscription in list(self._subscriptions):
            await subscription.close()
