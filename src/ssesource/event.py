"""Event records delivered to subscribers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class ReadyState(enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class EventType(str, enum.Enum):
    """Reserved listener names."""

    MESSAGE = "message"
    ERROR = "error"
    OPEN = "open"


@dataclass(frozen=True)
class Event:
    """A single event as seen by subscribers.

    Parsed frames carry ``state=OPEN``. The client also builds synthetic
    events: one per successful connect (``OPEN``) and one per failure
    (``CLOSED`` with ``error`` set).
    """

    id: str | None = None
    event: str | None = None
    data: str | None = None
    error: BaseException | None = None
    state: ReadyState = ReadyState.CLOSED

    @property
    def name(self) -> str:
        """Listener name for this event, falling back to ``message``."""
        return self.event or EventType.MESSAGE.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "data": self.data,
            "error": str(self.error) if self.error is not None else None,
            "state": self.state.value,
        }
