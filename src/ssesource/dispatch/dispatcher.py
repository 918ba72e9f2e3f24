"""Event fan-out to listeners and the optional delegate.

Dispatch calls only enqueue. A single consumer task drains the queue and
invokes handlers one at a time, so subscribers see events strictly in the
order the stream produced them and never run concurrently with each other.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from typing import Any, Protocol

import structlog

from ssesource.event import Event, EventType

from .registry import EventHandler, ListenerRegistry

log = structlog.get_logger()


class EventSourceDelegate(Protocol):
    """Shape of a delegate. Every method is optional; missing ones are skipped.

    ``on_message`` also receives the text of the frame the event came from.
    """

    def on_open(self, event: Event) -> Any: ...

    def on_error(self, event: Event) -> Any: ...

    def on_message(self, event: Event, message: str) -> Any: ...


_Delivery = tuple[list[EventHandler], Event]


class Dispatcher:
    """Routes events to registered handlers on a single delivery task."""

    def __init__(
        self,
        registry: ListenerRegistry | None = None,
        delegate: Any | None = None,
    ) -> None:
        self.registry = registry if registry is not None else ListenerRegistry()
        self.delegate = delegate
        self._queue: asyncio.Queue[_Delivery] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the delivery task on the running loop. No-op if running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        """Cancel the delivery task.

        Called from inside a handler, the cancellation lands at that handler's
        next await and no further deliveries run.
        """
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def drain(self) -> None:
        """Wait until every queued delivery has been handed to its handlers.

        Returns at once when called from a handler, whose own delivery cannot
        finish until it returns.
        """
        if self.running and asyncio.current_task() is not self._task:
            await self._queue.join()

    def dispatch_open(self, event: Event) -> None:
        self._enqueue(EventType.OPEN.value, "on_open", event)

    def dispatch_error(self, event: Event) -> None:
        self._enqueue(EventType.ERROR.value, "on_error", event)

    def dispatch_message(self, event: Event, text: str = "") -> None:
        """Deliver to ``message`` handlers, then to handlers of the event's own name.

        ``text`` is the frame the event was parsed from, passed on to the
        delegate's ``on_message``.
        """
        self._enqueue(EventType.MESSAGE.value, "on_message", event, message=text)
        if event.event:
            self._enqueue(event.event, None, event)

    def _enqueue(
        self,
        name: str,
        delegate_method: str | None,
        event: Event,
        **delegate_kwargs: Any,
    ) -> None:
        handlers = self.registry.handlers(name)
        if delegate_method is not None and self.delegate is not None:
            callback = getattr(self.delegate, delegate_method, None)
            if callable(callback):
                if delegate_kwargs:
                    callback = functools.partial(callback, **delegate_kwargs)
                handlers.append(callback)
        if not handlers:
            return
        self.start()
        self._queue.put_nowait((handlers, event))

    async def run(self) -> None:
        """Consume deliveries until stopped. Runs as the dispatcher's task."""
        current = asyncio.current_task()
        while self._task is current:
            handlers, event = await self._queue.get()
            try:
                for handler in handlers:
                    if self._task is not current:
                        break
                    await self._invoke(handler, event)
            finally:
                self._queue.task_done()

    async def _invoke(self, handler: EventHandler, event: Event) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception(
                "handler_error",
                handler=getattr(handler, "__qualname__", repr(handler)),
                event_name=event.name,
                state=event.state.value,
            )
