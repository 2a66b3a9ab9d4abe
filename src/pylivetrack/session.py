"""Per-consumer tracking session with staleness detection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from pylivetrack._constants import DEFAULT_STALE_CHECK_INTERVAL_SECONDS, DEFAULT_STALE_THRESHOLD_MS
from pylivetrack.channel import Subscription, SubscriptionStatus, UpdateChannel
from pylivetrack.models import LocationUpdate, now_ms
from pylivetrack.state.policy import is_stale

_logger = logging.getLogger(__name__)

DISPLAY_NO_DATA = "no data"
DISPLAY_STALE = "stale"
DISPLAY_LIVE = "live"
DISPLAY_ERROR = "error"


class TrackingSession:
    """Binds one vehicle id to a channel subscription at a time.

    Usage::

        async with TrackingSession(channel) as session:
            async with session.track("V1") as subscription:
                async for update in subscription:
                    ...

    Parameters
    ----------
    channel : UpdateChannel
        Channel to subscribe on.
    stale_threshold_ms : int
        Age after which the latest update is stale.
    stale_check_interval : float
        Seconds between periodic staleness checks.
    on_stale_change : callable, optional
        Called with the new staleness flag whenever it flips.
    clock : callable
        Epoch milliseconds, injectable for tests.
    """

    def __init__(
        self,
        channel: UpdateChannel,
        *,
        stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS,
        stale_check_interval: float = DEFAULT_STALE_CHECK_INTERVAL_SECONDS,
        on_stale_change: Callable[[bool], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if stale_check_interval <= 0:
            raise ValueError("stale_check_interval must be > 0")
        self._channel = channel
        self._stale_threshold_ms = stale_threshold_ms
        self._stale_check_interval = stale_check_interval
        self._on_stale_change = on_stale_change
        self._clock = clock
        self._subscription: Subscription | None = None
        self._stale_task: asyncio.Task[None] | None = None
        self._stale = True
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> TrackingSession:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.unsubscribe()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def vehicle_id(self) -> str | None:
        return self._subscription.vehicle_id if self._subscription is not None else None

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    @property
    def last_update(self) -> LocationUpdate | None:
        return self._subscription.last_update if self._subscription is not None else None

    @property
    def is_stale(self) -> bool:
        """Staleness as of the most recent check or update arrival."""
        return self._stale

    @property
    def display_state(self) -> str:
        """User-facing summary: ``no data``, ``stale``, ``live`` or ``error``."""
        subscription = self._subscription
        if subscription is not None and subscription.status == SubscriptionStatus.ERROR:
            return DISPLAY_ERROR
        if self.last_update is None:
            return DISPLAY_NO_DATA
        return DISPLAY_STALE if self._stale else DISPLAY_LIVE

    def check_staleness(self, now_ms: int | None = None) -> bool:
        """Recompute :attr:`is_stale` and notify on change."""
        now = self._clock() if now_ms is None else now_ms
        last = self.last_update
        stale = is_stale(now, last.timestamp if last is not None else None, self._stale_threshold_ms)
        self._set_stale(stale)
        return stale

    def _set_stale(self, stale: bool) -> None:
        if stale == self._stale:
            return
        self._stale = stale
        _logger.debug("Vehicle %s staleness changed stale=%s", self.vehicle_id, stale)
        if self._on_stale_change is not None:
            try:
                self._on_stale_change(stale)
            except Exception:
                _logger.debug("on_stale_change callback failed", exc_info=True)

    def _on_update(self, _update: LocationUpdate) -> None:
        self.check_staleness()

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    async def subscribe(self, vehicle_id: str) -> Subscription:
        """Subscribe to *vehicle_id*, replacing any subscription to another id."""
        async with self._lock:
            current = self._subscription
            if current is not None and current.vehicle_id == vehicle_id.strip() and not current.closed:
                return current
            await self._release()
            subscription = await self._channel.subscribe(vehicle_id)
            subscription.add_listener(self._on_update)
            self._subscription = subscription
            self.check_staleness()
            self._stale_task = asyncio.get_running_loop().create_task(self._stale_loop())
            _logger.debug("Session tracking vehicle %s", subscription.vehicle_id)
            return subscription

    async def unsubscribe(self) -> None:
        """Release the current subscription.  Safe to call at any time."""
        async with self._lock:
            await self._release()

    async def _release(self) -> None:
        task = self._stale_task
        self._stale_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            await subscription.close()
        self._stale = True

    async def _stale_loop(self) -> None:
        while True:
            await asyncio.sleep(self._stale_check_interval)
            self.check_staleness()

    @contextlib.asynccontextmanager
    async def track(self, vehicle_id: str) -> AsyncIterator[Subscription]:
        """Scoped subscription released on every exit path."""
        subscription = await self.subscribe(vehicle_id)
        try:
            yield subscription
        finally:
            await self.unsubscribe()
