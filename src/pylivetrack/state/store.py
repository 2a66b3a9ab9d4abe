"""In-memory latest-position store.

Only :meth:`SnapshotStore.apply` replaces a vehicle's snapshot, and only
with an update that is not older than the one already held.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from pylivetrack.models import LocationUpdate, now_ms
from pylivetrack.state.policy import should_accept_update

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VehicleSnapshot:
    """Latest accepted update for one vehicle plus when we saw it."""

    update: LocationUpdate
    received_at: int


class SnapshotStore:
    """Per-vehicle latest :class:`LocationUpdate`.

    Deterministic: given the same sequence of updates the store ends in the
    same state regardless of arrival interleaving between vehicles.
    """

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._snapshots: dict[str, VehicleSnapshot] = {}

    def apply(self, update: LocationUpdate) -> bool:
        """Store *update* if it is not older than the cached one.

        Returns
        -------
        bool
            ``True`` when the update became the new snapshot.
        """
        current = self._snapshots.get(update.vehicle_id)
        cached_ts = current.update.timestamp if current is not None else None
        if not should_accept_update(cached_timestamp=cached_ts, incoming_timestamp=update.timestamp):
            _logger.debug(
                "Ignoring out-of-order update vehicle=%s ts=%s cached=%s",
                update.vehicle_id,
                update.timestamp,
                cached_ts,
            )
            return False
        self._snapshots[update.vehicle_id] = VehicleSnapshot(update=update, received_at=self._clock())
        return True

    def get(self, vehicle_id: str) -> LocationUpdate | None:
        snapshot = self._snapshots.get(vehicle_id)
        return snapshot.update if snapshot is not None else None

    def get_snapshot(self, vehicle_id: str) -> VehicleSnapshot | None:
        return self._snapshots.get(vehicle_id)

    def vehicle_ids(self) -> list[str]:
        return sorted(self._snapshots)

    def discard(self, vehicle_id: str) -> None:
        self._snapshots.pop(vehicle_id, None)

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
