"""Listener registry: event name → ordered handler list."""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable

import structlog

from ssesource.event import Event

log = structlog.get_logger()

EventHandler = Callable[[Event], "Awaitable[None] | None"]


class ListenerRegistry:
    """Thread-safe mapping of event names to handlers.

    Handlers for a name are kept in registration order and duplicates are
    allowed. Nothing is ever removed by delivery.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def add(self, name: str, handler: EventHandler) -> None:
        with self._lock:
            self._listeners.setdefault(name, []).append(handler)
            count = len(self._listeners[name])
        log.debug("listener_added", event_name=name, total=count)

    def handlers(self, name: str) -> list[EventHandler]:
        """Return a snapshot of the handlers registered under ``name``."""
        with self._lock:
            return list(self._listeners.get(name, ()))

    def names(self) -> list[str]:
        with self._lock:
            return list(self._listeners)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._listeners
