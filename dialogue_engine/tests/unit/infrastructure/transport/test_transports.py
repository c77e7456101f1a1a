"""Tests for the streaming and single-shot transports."""

import asyncio
import json

import pytest

from dialogue_engine.domain.exceptions import ModelInvocationError, StreamTimeoutError
from dialogue_engine.domain.model.stream import ChatEvent, ChatEventType
from dialogue_engine.infrastructure.transport import SingleShotTransport, StreamingTransport


@pytest.mark.unit
class TestStreamingTransport:
    async def test_events_until_end_message(self):
        transport = StreamingTransport()
        connection = transport.create_connection(10.0)

        await transport.send_message(connection, ChatEvent.partial_text("a"))
        await transport.send_message(connection, ChatEvent.partial_text("b"))
        await transport.send_end_message(connection, ChatEvent.end_of_text("ab"))
        await transport.send_message(connection, ChatEvent.partial_text("late"))

        events = [event async for event in connection.events()]
        assert [(e.type, e.content) for e in events] == [
            (ChatEventType.PARTIAL_TEXT, "a"),
            (ChatEventType.PARTIAL_TEXT, "b"),
            (ChatEventType.END_OF_TEXT, "ab"),
        ]
        assert events[-1].done is True
        assert connection.closed is True

    async def test_error_is_terminal_event(self):
        transport = StreamingTransport()
        connection = transport.create_connection(10.0)

        await transport.handle_error(connection, ModelInvocationError("provider down"))

        events = [event async for event in connection.events()]
        assert len(events) == 1
        assert events[0].type == ChatEventType.ERROR
        assert events[0].content == "provider down"
        assert events[0].done is True

    async def test_complete_connection_is_silent(self):
        transport = StreamingTransport()
        connection = transport.create_connection(10.0)

        await transport.send_message(connection, ChatEvent.partial_text("x"))
        await transport.complete_connection(connection)
        await transport.complete_connection(connection)

        events = await asyncio.wait_for(_collect(connection), timeout=2.0)
        assert [e.content for e in events] == ["x"]

    async def test_consumer_stops_after_lifetime_and_grace(self):
        transport = StreamingTransport(consumer_grace=0.05)
        connection = transport.create_connection(0.05)

        events = await asyncio.wait_for(_collect(connection), timeout=2.0)

        assert events == []
        assert connection.is_expired

    def test_sse_frame(self):
        event = ChatEvent.end_of_text("héllo", done=True)

        frame = event.to_sse()

        assert frame.startswith("event: end_of_text\ndata: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload["content"] == "héllo"
        assert payload["done"] is True


@pytest.mark.unit
class TestSingleShotTransport:
    async def test_resolves_with_end_event_only(self):
        transport = SingleShotTransport()
        connection = transport.create_connection(10.0)

        await transport.send_message(connection, ChatEvent.partial_text("a"))
        await transport.send_message(connection, ChatEvent.tool_invoked("echo"))
        await transport.send_end_message(connection, ChatEvent.end_of_text("final"))

        event = await connection.wait()
        assert event.type == ChatEventType.END_OF_TEXT
        assert event.content == "final"
        assert event.done is True

    async def test_second_result_is_ignored(self):
        transport = SingleShotTransport()
        connection = transport.create_connection(10.0)

        await transport.send_end_message(connection, ChatEvent.end_of_text("first"))
        await transport.send_end_message(connection, ChatEvent.end_of_text("second"))
        await transport.handle_error(connection, RuntimeError("late"))

        assert (await connection.wait()).content == "first"

    async def test_silent_completion_returns_partial_text(self):
        transport = SingleShotTransport()
        connection = transport.create_connection(10.0)

        await transport.send_message(connection, ChatEvent.partial_text("par"))
        await transport.send_message(connection, ChatEvent.partial_text("tial"))
        await transport.complete_connection(connection)

        assert (await connection.wait()).content == "partial"

    async def test_error_raised_to_waiter(self):
        transport = SingleShotTransport()
        connection = transport.create_connection(10.0)

        await transport.handle_error(connection, RuntimeError("boom"))

        with pytest.raises(ModelInvocationError) as exc_info:
            await connection.wait()
        assert isinstance(exc_info.value.original_error, RuntimeError)

    async def test_wait_times_out(self):
        connection = SingleShotTransport().create_connection(0.05)

        with pytest.raises(StreamTimeoutError):
            await connection.wait()


async def _collect(connection):
    return [event async for event in connection.events()]
