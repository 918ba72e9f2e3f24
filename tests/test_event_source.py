"""Tests for the EventSource lifecycle against a mocked upstream."""

import asyncio
from unittest.mock import patch

import httpx
import pytest
import respx
from httpx import Response

from ssesource.client.event_source import EventSource
from ssesource.config import EventSourceConfig
from ssesource.errors import BadStatus, FrameTooLarge, StreamClosed
from ssesource.event import Event, ReadyState
from ssesource.stream.frame_parser import ParsedFrame

URL = "http://events.test/stream"


@pytest.fixture
def config():
    return EventSourceConfig(retry_interval=10.0)


async def _wait_for(predicate, timeout=2.0):
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def _collector(source, name):
    seen = []
    source.add_event_listener(name, seen.append)
    return seen


class TestInitialState:
    @pytest.mark.asyncio
    async def test_defaults(self):
        source = EventSource(URL, auto_open=False)
        assert source.url == URL
        assert source.ready_state == ReadyState.CONNECTING
        assert source.last_event_id is None
        assert source.retry_interval == 1.0
        await source.aclose()

    def test_auto_open_requires_running_loop(self):
        with pytest.raises(RuntimeError):
            EventSource(URL)

    @pytest.mark.asyncio
    async def test_auto_open_after_initial_delay(self):
        with patch.object(EventSource, "open") as mock_open:
            source = EventSource(URL, config=EventSourceConfig(retry_interval=0.02))
            assert not mock_open.called
            await asyncio.sleep(0.1)
            mock_open.assert_called_once()
            await source.aclose()


class TestRequestHeaders:
    @pytest.mark.asyncio
    async def test_protocol_headers(self, config):
        source = EventSource(URL, config=config, auto_open=False)
        headers = source.request_headers()
        assert headers["Accept"] == "text/event-stream"
        assert headers["Cache-Control"] == "no-cache"
        assert "Last-Event-ID" not in headers
        await source.aclose()

    @pytest.mark.asyncio
    async def test_last_event_id_after_frame(self, config):
        source = EventSource(URL, config=config, auto_open=False)
        source._apply_frame(ParsedFrame(Event(id="42", state=ReadyState.OPEN)))
        assert source.request_headers()["Last-Event-ID"] == "42"
        await source.aclose()

    @pytest.mark.asyncio
    async def test_empty_id_does_not_clear(self, config):
        source = EventSource(URL, config=config, auto_open=False)
        source._apply_frame(ParsedFrame(Event(id="42", state=ReadyState.OPEN)))
        source._apply_frame(ParsedFrame(Event(id="", state=ReadyState.OPEN)))
        source._apply_frame(ParsedFrame(Event(state=ReadyState.OPEN)))
        assert source.last_event_id == "42"
        await source.aclose()

    @pytest.mark.asyncio
    async def test_extra_headers_merged(self):
        config = EventSourceConfig(headers={"Authorization": "Bearer t", "accept": "text/plain"})
        source = EventSource(URL, config=config, auto_open=False)
        headers = source.request_headers()
        assert headers["Authorization"] == "Bearer t"
        assert headers["Accept"] == "text/event-stream"
        await source.aclose()


class TestListeners:
    @pytest.mark.asyncio
    async def test_registered_handlers_reach_dispatcher(self, config):
        source = EventSource(URL, config=config, auto_open=False)
        assert source.dispatcher.registry is source.registry

        seen = []
        source.on_open(lambda e: seen.append(("open", e.state)))
        source.on_message(lambda e: seen.append(("message", e.data)))
        source.add_event_listener("x", lambda e: seen.append(("x", e.data)))
        source.on_error(lambda e: seen.append(("error", e.state)))

        source.dispatcher.dispatch_open(Event(state=ReadyState.OPEN))
        source.dispatcher.dispatch_message(Event(event="x", data="hi", state=ReadyState.OPEN))
        source.dispatcher.dispatch_error(Event(state=ReadyState.CLOSED))
        await source.dispatcher.drain()
        await source.aclose()

        assert seen == [
            ("open", ReadyState.OPEN),
            ("message", "hi"),
            ("x", "hi"),
            ("error", ReadyState.CLOSED),
        ]


class TestStreaming:
    @pytest.mark.asyncio
    @respx.mock
    async def test_named_event_roundtrip(self, config):
        respx.get(URL).mock(
            return_value=Response(200, text="id: 5\nevent: hello_event\ndata: world\n\n")
        )
        source = EventSource(URL, config=config, auto_open=False)
        opened = _collector(source, "open")
        messages = _collector(source, "message")
        named = _collector(source, "hello_event")

        source.open()
        await _wait_for(lambda: named)
        await source.aclose()

        assert len(opened) == 1
        assert opened[0].state == ReadyState.OPEN
        expected = Event(id="5", event="hello_event", data="world", state=ReadyState.OPEN)
        assert messages == [expected]
        assert named == [expected]
        assert source.last_event_id == "5"

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_frame_updates_interval(self, config):
        respx.get(URL).mock(return_value=Response(200, text="retry: 2500\n\n"))
        source = EventSource(URL, config=config, auto_open=False)
        messages = _collector(source, "message")

        source.open()
        await _wait_for(lambda: messages)
        await source.aclose()

        assert source.retry_interval == 2.5
        assert messages[0].data is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_reconnect_sends_last_event_id(self):
        route = respx.get(URL)
        route.side_effect = [
            Response(200, text="retry: 10\nid: 5\ndata: first\n\n"),
            Response(200, text="retry: 10000\ndata: second\n\n"),
        ]
        source = EventSource(URL, config=EventSourceConfig(retry_interval=10.0), auto_open=False)
        messages = _collector(source, "message")

        source.open()
        await _wait_for(lambda: len(messages) >= 2)
        await source.aclose()

        assert [m.data for m in messages] == ["first", "second"]
        assert route.call_count == 2
        assert "Last-Event-ID" not in route.calls[0].request.headers
        assert route.calls[1].request.headers["Last-Event-ID"] == "5"
        assert route.calls[1].request.headers["Accept"] == "text/event-stream"

    @pytest.mark.asyncio
    @respx.mock
    async def test_open_is_idempotent(self, config):
        route = respx.get(URL).mock(return_value=Response(200, text="data: x\n\n"))
        source = EventSource(URL, config=config, auto_open=False)
        errors = _collector(source, "error")

        source.open()
        source.open()
        await _wait_for(lambda: errors)
        await source.aclose()

        assert route.call_count == 1


class TestFailures:
    @pytest.mark.asyncio
    @respx.mock
    async def test_clean_end_reported_as_error(self, config):
        respx.get(URL).mock(return_value=Response(200, text="data: a\n\n"))
        source = EventSource(URL, config=config, auto_open=False)
        errors = _collector(source, "error")

        source.open()
        await _wait_for(lambda: errors)

        assert isinstance(errors[0].error, StreamClosed)
        assert errors[0].state == ReadyState.CLOSED
        assert source.ready_state == ReadyState.CLOSED
        assert source._reconnect_timer is not None
        await source.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_bad_status_then_recovery(self):
        route = respx.get(URL)
        route.side_effect = [
            Response(503, text="unavailable"),
            Response(200, text="retry: 10000\ndata: back\n\n"),
        ]
        source = EventSource(URL, config=EventSourceConfig(retry_interval=0.01), auto_open=False)
        errors = _collector(source, "error")
        opened = _collector(source, "open")
        messages = _collector(source, "message")

        source.open()
        await _wait_for(lambda: messages)
        await source.aclose()

        assert isinstance(errors[0].error, BadStatus)
        assert errors[0].error.status_code == 503
        assert len(opened) == 1
        assert messages[0].data == "back"

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(self, config):
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))
        source = EventSource(URL, config=config, auto_open=False)
        errors = _collector(source, "error")

        source.open()
        await _wait_for(lambda: errors)
        await source.aclose()

        assert isinstance(errors[0].error, httpx.ConnectError)
        assert errors[0].state == ReadyState.CLOSED

    @pytest.mark.asyncio
    @respx.mock
    async def test_oversized_frame_is_transport_failure(self):
        respx.get(URL).mock(return_value=Response(200, text="data: " + "x" * 100))
        config = EventSourceConfig(retry_interval=10.0, max_buffer_chars=10)
        source = EventSource(URL, config=config, auto_open=False)
        errors = _collector(source, "error")

        source.open()
        await _wait_for(lambda: errors)
        await source.aclose()

        assert isinstance(errors[0].error, FrameTooLarge)


class TestReconnectTimer:
    @pytest.mark.asyncio
    async def test_failure_schedules_one_reconnect(self):
        source = EventSource(URL, config=EventSourceConfig(retry_interval=0.05), auto_open=False)
        errors = _collector(source, "error")
        loop = asyncio.get_running_loop()

        with patch.object(source, "open") as mock_open:
            source._handle_failure(OSError("dropped"))
            timer = source._reconnect_timer
            assert timer is not None
            assert 0 < timer.when() - loop.time() <= 0.05

            await asyncio.sleep(0.15)
            mock_open.assert_called_once()

        await source.dispatcher.drain()
        assert len(errors) == 1
        assert isinstance(errors[0].error, OSError)
        await source.aclose()

    @pytest.mark.asyncio
    async def test_close_before_timer_fires(self):
        source = EventSource(URL, config=EventSourceConfig(retry_interval=0.02), auto_open=False)
        with patch.object(source, "open") as mock_open:
            source._handle_failure(OSError("dropped"))
            source.close()
            await asyncio.sleep(0.08)
            mock_open.assert_not_called()
        assert source._reconnect_timer is None
        await source.aclose()

    @pytest.mark.asyncio
    async def test_timer_rechecks_closed_flag(self):
        source = EventSource(URL, config=EventSourceConfig(retry_interval=0.02), auto_open=False)
        with patch.object(source, "open") as mock_open:
            source.close()
            source._on_reconnect_timer()
            mock_open.assert_not_called()
        await source.aclose()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, config):
        source = EventSource(URL, config=config, auto_open=False)
        errors = _collector(source, "error")

        source.close()
        source.close()
        await source.dispatcher.drain()

        assert source.ready_state == ReadyState.CLOSED
        assert source._reconnect_timer is None
        assert errors == []
        await source.aclose()

    @pytest.mark.asyncio
    async def test_close_cancels_initial_open(self):
        with patch.object(EventSource, "open") as mock_open:
            source = EventSource(URL, config=EventSourceConfig(retry_interval=0.02))
            source.close()
            await asyncio.sleep(0.08)
            mock_open.assert_not_called()
            await source.aclose()


class TestDelegate:
    @pytest.mark.asyncio
    @respx.mock
    async def test_delegate_receives_alongside_listeners(self, config):
        respx.get(URL).mock(return_value=Response(200, text="event: x\ndata: y\n\n"))

        class Delegate:
            def __init__(self):
                self.calls = []
                self.frames = []

            async def on_open(self, event):
                self.calls.append("open")

            def on_message(self, event, message):
                self.calls.append(f"message:{event.data}")
                self.frames.append(message)

            def on_error(self, event):
                self.calls.append("error")

        delegate = Delegate()
        source = EventSource(URL, config=config, auto_open=False)
        source.delegate = delegate
        messages = _collector(source, "message")

        source.open()
        await _wait_for(lambda: "error" in delegate.calls)
        await source.aclose()

        assert delegate.calls == ["open", "message:y", "error"]
        assert delegate.frames == ["event: x\ndata: y"]
        assert [m.data for m in messages] == ["y"]
