"""Transport-level failures reported through ``error`` events."""

from __future__ import annotations


class EventSourceError(Exception):
    """Base class for failures raised inside the connection task."""


class BadStatus(EventSourceError):
    """The server answered with something other than 200."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"Unexpected response status: {status_code}")


class StreamClosed(EventSourceError):
    """The server ended the response body.

    Event streams are expected to be infinite, so a clean end is treated
    the same as a dropped connection.
    """

    def __init__(self) -> None:
        super().__init__("Connection with the event source was closed.")


class FrameTooLarge(EventSourceError):
    """A partial frame grew past the configured buffer limit."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"SSE buffer overflow: {size} > {limit} characters")
