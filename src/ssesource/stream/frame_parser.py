"""Field-level decoding of a completed SSE frame.

Each line is ``<key>: <value>``. Only ``id``, ``event``, ``data`` and
``retry`` are understood; everything else, including lines without the
``": "`` delimiter, is skipped.

Only the last ``data`` line of a frame is kept. Multiple ``data`` lines are
not joined with newlines.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from ssesource.event import Event, ReadyState

log = structlog.get_logger()

KEY_VALUE_DELIMITER = ": "

ID_KEY = "id"
EVENT_KEY = "event"
DATA_KEY = "data"
RETRY_KEY = "retry"


@dataclass(frozen=True)
class ParsedFrame:
    """A decoded frame plus the reconnect delay it asked for, in seconds.

    ``text`` is the frame itself, its lines joined with ``\n``.
    """

    event: Event
    retry: float | None = None
    text: str = ""


def split_field(line: str) -> tuple[str, str] | None:
    """Split a field line into (key, value), or None if it should be skipped."""
    index = line.find(KEY_VALUE_DELIMITER)
    if index == -1 or index == len(line) - len(KEY_VALUE_DELIMITER):
        return None
    return line[:index], line[index + len(KEY_VALUE_DELIMITER):]


def parse_retry(value: str) -> float | None:
    """Convert a ``retry`` value in milliseconds to seconds."""
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value) / 1000


def parse_frame(lines: Iterable[str]) -> ParsedFrame:
    """Decode the field lines of one frame."""
    lines = list(lines)
    event_id: str | None = None
    name: str | None = None
    data: str | None = None
    retry: float | None = None

    for line in lines:
        if not line:
            continue

        parts = split_field(line)
        if parts is None:
            continue
        key, value = parts

        if key == ID_KEY:
            event_id = value
        elif key == EVENT_KEY:
            name = value
        elif key == DATA_KEY:
            data = value
        elif key == RETRY_KEY:
            parsed = parse_retry(value)
            if parsed is None:
                log.debug("retry_value_ignored", value=value[:32])
            else:
                retry = parsed

    event = Event(id=event_id, event=name, data=data, state=ReadyState.OPEN)
    return ParsedFrame(event=event, retry=retry, text="\n".join(lines))
