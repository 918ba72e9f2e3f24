"""Connection ready-state machine.

CONNECTING ──[200 response]──→ OPEN
     │                           │
     └──[failure / close()]──────┴──→ CLOSED ──[open() / reconnect timer]──→ CONNECTING
"""

from __future__ import annotations

import structlog

from ssesource.event import ReadyState

log = structlog.get_logger()


# Valid transitions: (from_state, to_state)
VALID_TRANSITIONS: set[tuple[ReadyState, ReadyState]] = {
    (ReadyState.CONNECTING, ReadyState.OPEN),
    (ReadyState.CONNECTING, ReadyState.CLOSED),
    (ReadyState.OPEN, ReadyState.CLOSED),
    (ReadyState.CLOSED, ReadyState.CONNECTING),
}


class InvalidTransition(Exception):
    """Raised when an invalid ready-state transition is attempted."""

    def __init__(self, from_state: ReadyState, to_state: ReadyState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} → {to_state.value}")


def validate_transition(from_state: ReadyState, to_state: ReadyState) -> None:
    """Validate a state transition, raising InvalidTransition if not allowed."""
    if (from_state, to_state) not in VALID_TRANSITIONS:
        raise InvalidTransition(from_state, to_state)


def transition(
    current: ReadyState,
    target: ReadyState,
    url: str,
    trigger: str = "",
) -> ReadyState:
    """Execute a validated state transition, logging the change.

    Moving to the state the connection is already in is a no-op.
    """
    if current == target:
        return current
    validate_transition(current, target)
    log.info(
        "state_transition",
        url=url,
        from_state=current.value,
        to_state=target.value,
        trigger=trigger,
    )
    return target
