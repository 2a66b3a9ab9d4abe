"""Fixed-interval driver for registered position simulators."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from pylivetrack._constants import DEFAULT_TICK_INTERVAL_SECONDS
from pylivetrack.exceptions import InvalidTransitionError
from pylivetrack.models import VehicleState
from pylivetrack.simulator import PositionSimulator

if TYPE_CHECKING:
    from pylivetrack.channel import UpdateChannel

_logger = logging.getLogger(__name__)


class SimulationTicker:
    """One timer shared by every registered vehicle.

    Each tick advances every ``EN_ROUTE`` simulator by the interval and
    publishes the resulting update.  A vehicle that reaches its drop-off is
    moved to ``ARRIVED_AT_DROPOFF`` and deregistered.

    Usage::

        ticker = SimulationTicker(channel, interval=5.0)
        ticker.register(simulator)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        channel: UpdateChannel,
        *,
        interval: float = DEFAULT_TICK_INTERVAL_SECONDS,
        on_arrival: Callable[[PositionSimulator], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Tick interval must be > 0 (got {interval!r})")
        self._channel = channel
        self._interval = float(interval)
        self._on_arrival = on_arrival
        self._simulators: dict[str, PositionSimulator] = {}
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._tick_count = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def vehicle_ids(self) -> list[str]:
        return list(self._simulators)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def register(self, simulator: PositionSimulator) -> None:
        """Add (or replace) the simulator for its vehicle id."""
        previous = self._simulators.get(simulator.vehicle_id)
        if previous is not None and previous is not simulator:
            _logger.debug("Replacing simulator for vehicle %s", simulator.vehicle_id)
        self._simulators[simulator.vehicle_id] = simulator

    def deregister(self, vehicle_id: str) -> PositionSimulator | None:
        return self._simulators.pop(vehicle_id, None)

    def get(self, vehicle_id: str) -> PositionSimulator | None:
        return self._simulators.get(vehicle_id)

    def tick(self) -> int:
        """Run one tick synchronously.

        Returns
        -------
        int
            Number of updates accepted by the channel.
        """
        self._tick_count += 1
        published = 0
        for vehicle_id, simulator in list(self._simulators.items()):
            try:
                published += self._tick_one(simulator)
            except Exception:
                _logger.warning("Tick failed for vehicle %s", vehicle_id, exc_info=True)
        return published

    def _tick_one(self, simulator: PositionSimulator) -> int:
        if not simulator.machine.is_en_route:
            return 0
        result = simulator.advance(self._interval)
        published = 0
        if result.update is not None and self._channel.publish(result.update):
            published = 1
        if result.end_reached:
            self._arrive(simulator)
        return published

    def _arrive(self, simulator: PositionSimulator) -> None:
        self.deregister(simulator.vehicle_id)
        try:
            simulator.machine.transition(VehicleState.ARRIVED_AT_DROPOFF, reason="route end reached")
        except InvalidTransitionError:
            _logger.warning(
                "Vehicle %s reached the drop-off in state %s",
                simulator.vehicle_id,
                simulator.machine.state,
            )
        _logger.info("Vehicle %s arrived at drop-off", simulator.vehicle_id)
        if self._on_arrival is not None:
            try:
                self._on_arrival(simulator)
            except Exception:
                _logger.debug("on_arrival callback failed", exc_info=True)

    def start(self) -> None:
        """Start the periodic task; a no-op when already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(self._stop_event))
        _logger.debug("Ticker started interval=%.3fs", self._interval)

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                self.tick()

    async def stop(self) -> None:
        """Stop the periodic task; no tick fires after this returns."""
        task = self._task
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._task = None
        self._stop_event = None
        _logger.debug("Ticker stopped after %d tick(s)", self._tick_count)
