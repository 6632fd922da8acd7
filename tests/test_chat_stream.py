import pytest
from pydantic import TypeAdapter

from parley.llms import ChatStream
from parley.llms.events import (
    ContentDelta,
    StreamCancelled,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamStart,
)


def stream_of(*events, closed_flag=None):
    async def producer():
        try:
            for event in events:
                yield event
        finally:
            if closed_flag is not None:
                closed_flag.append(True)

    return producer


async def test_stream_ends_after_terminal_event():
    stream = ChatStream(stream_of(StreamStart(), StreamComplete(content="hi"), ContentDelta(content="ignored")))

    async with stream:
        events = [event async for event in stream]

    assert events == [StreamStart(), StreamComplete(content="hi")]
    assert stream.closed


async def test_cancel_replaces_next_event_and_closes_producer():
    closed = []
    stream = ChatStream(
        stream_of(StreamStart(), ContentDelta(content="a"), ContentDelta(content="b"), closed_flag=closed)
    )
    events = []

    async with stream:
        async for event in stream:
            events.append(event)
            if isinstance(event, ContentDelta):
                stream.cancel()

    assert events == [StreamStart(), ContentDelta(content="a"), StreamCancelled()]
    assert closed == [True]


async def test_cancel_before_iteration():
    stream = ChatStream(stream_of(StreamStart()))
    stream.cancel()

    async with stream:
        assert [event async for event in stream] == [StreamCancelled()]


async def test_aclose_is_idempotent_and_calls_on_close_once():
    calls = []

    async def on_close():
        calls.append(True)

    stream = ChatStream(stream_of(StreamError(error="boom")), on_close=on_close)
    async with stream:
        [event async for event in stream]
    await stream.aclose()
    await stream.aclose()

    assert calls == [True]


async def test_stream_can_only_be_consumed_once():
    stream = ChatStream(stream_of(StreamComplete()))
    async with stream:
        [event async for event in stream]
        with pytest.raises(RuntimeError):
            [event async for event in stream]


def test_events_are_discriminated_by_kind():
    adapter = TypeAdapter(StreamEvent)

    assert adapter.validate_python({"event_kind": "content", "content": "x"}) == ContentDelta(content="x")
    assert adapter.validate_python({"event_kind": "cancelled"}) == StreamCancelled()
