"""Vehicle lifecycle state machine.

Only the single forward step along the chain and the exception edges into
``FAILED`` / ``CANCELLED`` are legal.  Any other request raises
:class:`InvalidTransitionError` and leaves the machine untouched.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from pylivetrack.exceptions import InvalidTransitionError
from pylivetrack.models.vehicle import VehicleState

_logger = logging.getLogger(__name__)

LIFECYCLE_CHAIN: tuple[VehicleState, ...] = (
    VehicleState.IDLE,
    VehicleState.ASSIGNED,
    VehicleState.ACCEPTED,
    VehicleState.ARRIVED_AT_PICKUP,
    VehicleState.LOADING,
    VehicleState.LOADING_COMPLETE,
    VehicleState.EN_ROUTE,
    VehicleState.ARRIVED_AT_DROPOFF,
    VehicleState.UNLOADING,
    VehicleState.COMPLETED,
)

EXCEPTION_STATES = frozenset({VehicleState.FAILED, VehicleState.CANCELLED})

_NEXT: dict[VehicleState, VehicleState] = dict(zip(LIFECYCLE_CHAIN, LIFECYCLE_CHAIN[1:], strict=False))


def allowed_targets(state: VehicleState) -> frozenset[VehicleState]:
    """All states reachable from *state* in one legal transition."""
    if state.is_terminal:
        return frozenset()
    targets = set(EXCEPTION_STATES)
    nxt = _NEXT.get(state)
    if nxt is not None:
        targets.add(nxt)
    return frozenset(targets)


@dataclass(frozen=True, slots=True)
class StateTransition:
    """One applied transition, kept for the shipment history view."""

    source: VehicleState
    target: VehicleState
    at: float
    reason: str | None = None


class VehicleStateMachine:
    """Exactly one current state per vehicle; transitions are the only mutator."""

    def __init__(
        self,
        vehicle_id: str,
        initial: VehicleState = VehicleState.IDLE,
        *,
        on_transition: Callable[[StateTransition], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._vehicle_id = vehicle_id
        self._state = initial
        self._on_transition = on_transition
        self._clock = clock
        self._history: list[StateTransition] = []

    @property
    def vehicle_id(self) -> str:
        return self._vehicle_id

    @property
    def state(self) -> VehicleState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def is_en_route(self) -> bool:
        return self._state == VehicleState.EN_ROUTE

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    def can_transition(self, target: VehicleState) -> bool:
        return target in allowed_targets(self._state)

    def transition(self, target: VehicleState, *, reason: str | None = None) -> StateTransition:
        """Move to *target* or raise without changing state."""
        target = VehicleState(target)
        if not self.can_transition(target):
            _logger.debug(
                "Rejected transition vehicle=%s %s -> %s",
                self._vehicle_id,
                self._state,
                target,
            )
            raise InvalidTransitionError(self._state, target)

        record = StateTransition(source=self._state, target=target, at=self._clock(), reason=reason)
        self._state = target
        self._history.append(record)
        _logger.debug("Vehicle %s transitioned %s -> %s", self._vehicle_id, record.source, target)

        if self._on_transition is not None:
            try:
                self._on_transition(record)
            except Exception:
                _logger.debug("on_transition callback failed", exc_info=True)
        return record

    def advance(self, *, reason: str | None = None) -> StateTransition:
        """Take the single forward step along the lifecycle chain."""
        nxt = _NEXT.get(self._state)
        if nxt is None:
            raise InvalidTransitionError(self._state, "<next>")
        return self.transition(nxt, reason=reason)

    def advance_to(self, target: VehicleState) -> list[StateTransition]:
        """Walk forward step by step until *target* is reached.

        All-or-nothing: if *target* is not ahead on the chain nothing changes.
        """
        target = VehicleState(target)
        if target not in LIFECYCLE_CHAIN or self._state not in LIFECYCLE_CHAIN:
            raise InvalidTransitionError(self._state, target)
        if LIFECYCLE_CHAIN.index(target) <= LIFECYCLE_CHAIN.index(self._state):
            raise InvalidTransitionError(self._state, target)
        records: list[StateTransition] = []
        while self._state != target:
            records.append(self.advance())
        return records

    def fail(self, reason: str | None = None) -> StateTransition:
        return self.transition(VehicleState.FAILED, reason=reason)

    def cancel(self, reason: str | None = None) -> StateTransition:
        return self.transition(VehicleState.CANCELLED, reason=reason)

    def __repr__(self) -> str:
        return f"VehicleStateMachine(vehicle_id={self._vehicle_id!r}, state={self._state.value!r})"
