"""EventSource: a self-reconnecting SSE client.

Owns the connection state (ready state, last event id, retry interval) and
ties the pieces together: the connection task reads text chunks from httpx,
feeds them through the FrameBuffer and parse_frame, and hands the resulting
events to the Dispatcher. Any failure, including the server ending the
stream, is reported as an ``error`` event and followed by a reconnect after
``retry_interval`` seconds unless close() was called.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from ssesource.config import EventSourceConfig
from ssesource.dispatch.dispatcher import Dispatcher
from ssesource.dispatch.registry import EventHandler, ListenerRegistry
from ssesource.errors import BadStatus, StreamClosed
from ssesource.event import Event, EventType, ReadyState
from ssesource.stream.frame_buffer import FrameBuffer
from ssesource.stream.frame_parser import ParsedFrame, parse_frame

from .state_machine import transition

log = structlog.get_logger()

EVENT_STREAM_MIME = "text/event-stream"


class EventSource:
    """Connects to an SSE endpoint and keeps the stream alive.

    With ``auto_open`` the first connection attempt is scheduled after the
    initial retry interval, so construction must happen inside a running
    event loop.
    """

    def __init__(
        self,
        url: str,
        *,
        config: EventSourceConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        delegate: Any | None = None,
        auto_open: bool = True,
    ) -> None:
        self.config = config or EventSourceConfig()
        self._url = url
        self._http_client = http_client
        self._owns_client = http_client is None

        self.registry = ListenerRegistry()
        self.dispatcher = Dispatcher(self.registry, delegate)
        self._buffer = FrameBuffer(max_size=self.config.max_buffer_chars)

        self._ready_state = ReadyState.CONNECTING
        self._last_event_id: str | None = None
        self._retry_interval = self.config.retry_interval
        self._was_closed = False

        self._connection: asyncio.Task[None] | None = None
        self._reconnect_timer: asyncio.TimerHandle | None = None

        if auto_open:
            self._schedule_open(self._retry_interval, trigger="initial")

    # -- state -------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    @property
    def retry_interval(self) -> float:
        """Seconds to wait before reconnecting after a failure."""
        return self._retry_interval

    @property
    def delegate(self) -> Any | None:
        return self.dispatcher.delegate

    @delegate.setter
    def delegate(self, value: Any | None) -> None:
        self.dispatcher.delegate = value

    # -- listeners ---------------------------------------------------------

    def add_event_listener(self, name: str, handler: EventHandler) -> None:
        self.registry.add(name, handler)

    def on_message(self, handler: EventHandler) -> None:
        self.add_event_listener(EventType.MESSAGE.value, handler)

    def on_error(self, handler: EventHandler) -> None:
        self.add_event_listener(EventType.ERROR.value, handler)

    def on_open(self, handler: EventHandler) -> None:
        self.add_event_listener(EventType.OPEN.value, handler)

    # -- lifecycle ---------------------------------------------------------

    def request_headers(self) -> httpx.Headers:
        """Headers for the next connection attempt."""
        headers = httpx.Headers(self.config.headers)
        headers["Accept"] = EVENT_STREAM_MIME
        headers["Cache-Control"] = "no-cache"
        if self._last_event_id:
            headers["Last-Event-ID"] = self._last_event_id
        return headers

    def open(self) -> None:
        """Start a connection attempt. No-op while one is already running."""
        if self._connection_active():
            return

        self._cancel_reconnect()
        self._was_closed = False
        self._ready_state = transition(
            self._ready_state, ReadyState.CONNECTING, self._url, "open",
        )
        self._buffer.reset()

        headers = self.request_headers()
        self._connection = asyncio.get_running_loop().create_task(
            self._run_connection(headers)
        )

    def close(self) -> None:
        """Stop the stream for good. Safe to call repeatedly."""
        already_closed = self._was_closed and self._ready_state == ReadyState.CLOSED
        self._was_closed = True
        self._cancel_reconnect()
        if self._connection_active():
            self._connection.cancel()
        self._ready_state = transition(
            self._ready_state, ReadyState.CLOSED, self._url, "close",
        )
        if not already_closed:
            log.info("event_source_closed", url=self._url)

    async def aclose(self) -> None:
        """Close, then wait for pending deliveries and release the HTTP client.

        Safe to await from a handler: deliveries queued behind it are dropped.
        """
        self.close()
        if self._connection is not None:
            try:
                await self._connection
            except asyncio.CancelledError:
                pass
            self._connection = None
        await self.dispatcher.drain()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        await self.dispatcher.stop()

    async def __aenter__(self) -> EventSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- connection task ---------------------------------------------------

    def _connection_active(self) -> bool:
        """Whether a connection task is live and not already being cancelled."""
        task = self._connection
        return task is not None and not task.done() and not task.cancelling()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def _run_connection(self, headers: httpx.Headers) -> None:
        log.info(
            "connecting",
            url=self._url,
            last_event_id=self._last_event_id,
        )
        try:
            async with self._client().stream("GET", self._url, headers=headers) as response:
                if response.status_code != 200:
                    raise BadStatus(response.status_code)
                self._handle_open()
                async for chunk in response.aiter_text():
                    self._handle_chunk(chunk)
        except asyncio.CancelledError:
            log.debug("connection_cancelled", url=self._url)
            raise
        except Exception as exc:
            self._handle_failure(exc)
        else:
            self._handle_failure(StreamClosed())

    def _handle_open(self) -> None:
        self._ready_state = transition(
            self._ready_state, ReadyState.OPEN, self._url, "response_200",
        )
        log.info("connection_opened", url=self._url)
        self.dispatcher.dispatch_open(Event(state=ReadyState.OPEN))

    def _handle_chunk(self, chunk: str) -> None:
        for lines in self._buffer.feed(chunk):
            frame = parse_frame(lines)
            self._apply_frame(frame)
            self.dispatcher.dispatch_message(frame.event, frame.text)

    def _apply_frame(self, frame: ParsedFrame) -> None:
        """Record the id and retry interval a frame negotiated."""
        if frame.event.id:
            self._last_event_id = frame.event.id
        if frame.retry is not None and frame.retry != self._retry_interval:
            log.info(
                "retry_interval_updated",
                url=self._url,
                old=self._retry_interval,
                new=frame.retry,
            )
            self._retry_interval = frame.retry

    def _handle_failure(self, exc: BaseException) -> None:
        """Report a failure and, unless closed, schedule one reconnect."""
        self._ready_state = transition(
            self._ready_state, ReadyState.CLOSED, self._url, type(exc).__name__,
        )
        log.warning(
            "connection_failed",
            url=self._url,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self.dispatcher.dispatch_error(Event(state=ReadyState.CLOSED, error=exc))

        if self._was_closed:
            return
        self._schedule_open(self._retry_interval, trigger="reconnect")

    # -- reconnect timer ---------------------------------------------------

    def _schedule_open(self, delay: float, trigger: str) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._on_reconnect_timer)
        log.info(
            "reconnect_scheduled",
            url=self._url,
            delay=delay,
            trigger=trigger,
            last_event_id=self._last_event_id,
        )

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        if self._was_closed:
            log.debug("reconnect_skipped", url=self._url)
            return
        self.open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
