from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .events import PushEvent


class GateState(str, Enum):
    EVENT_RECEIVED = "event_received"
    GATE_OPEN_FOR_CI = "gate_open_for_ci"
    GATE_OPEN_FOR_PUBLISH = "gate_open_for_publish"
    FILTERED = "filtered"


TERMINAL_STATES: frozenset[GateState] = frozenset(
    {GateState.GATE_OPEN_FOR_CI, GateState.GATE_OPEN_FOR_PUBLISH, GateState.FILTERED}
)

ALLOWED_TRANSITIONS: dict[GateState, set[GateState]] = {
    GateState.EVENT_RECEIVED: set(TERMINAL_STATES),
    GateState.GATE_OPEN_FOR_CI: set(),
    GateState.GATE_OPEN_FOR_PUBLISH: set(),
    GateState.FILTERED: set(),
}


class IllegalTransitionError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class GateSnapshot:
    """Where a single event is in its (one-step) evaluation."""

    state: GateState
    event: PushEvent

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_json(self) -> dict[str, object]:
        return {"state": self.state.value, "event": self.event.to_json()}


def received(event: PushEvent) -> GateSnapshot:
    return GateSnapshot(state=GateState.EVENT_RECEIVED, event=event)


def transition(*, current: GateSnapshot, to: GateState) -> GateSnapshot:
    allowed = ALLOWED_TRANSITIONS.get(current.state, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.state.value} -> {to.value}")
    return GateSnapshot(state=to, event=current.event)
