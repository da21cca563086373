"""Tests for the server-sent event chat transport."""
import asyncio

import pytest

from siasef.errors import ProviderUnavailableError
from siasef.models import Source
from siasef.streaming import (
    DONE_EVENT,
    SSEDecoder,
    decode_chat_stream,
    format_event,
    prime_stream,
    sse_events,
)


async def _deltas(*items, fail_after=None, closed=None):
    try:
        for index, item in enumerate(items):
            if fail_after == index:
                raise ProviderUnavailableError("stream interrupted")
            yield item
        if fail_after == len(items):
            raise ProviderUnavailableError("stream interrupted")
    finally:
        if closed is not None:
            closed.append(True)


async def _collect(stream):
    return [event async for event in stream]


async def test_stream_events_in_order():
    """Test the exact events for deltas "Hal", "o" with no sources."""
    events = await _collect(sse_events([], _deltas("Hal", "o")))

    assert events == [
        'data: {"sources":[]}\n\n',
        'data: {"text":"Hal"}\n\n',
        'data: {"text":"o"}\n\n',
        "data: [DONE]\n\n",
    ]


async def test_sources_event_uses_wire_keys():
    source = Source(id=1, chunk_id=42, document_name="PP-50-2012.txt", page_number=3, content="Pasal 5", score=0.9)

    events = await _collect(sse_events([source], _deltas()))

    assert events[0] == (
        'data: {"sources":[{"id":1,"chunkId":42,"documentName":"PP-50-2012.txt",'
        '"pageNumber":3,"content":"Pasal 5","score":0.9}]}\n\n'
    )
    assert events[-1] == DONE_EVENT


async def test_empty_deltas_are_not_sent():
    events = await _collect(sse_events([], _deltas("", "Ya", "")))

    assert events[1:] == ['data: {"text":"Ya"}\n\n', DONE_EVENT]


async def test_midstream_error_becomes_error_event_without_done():
    events = await _collect(sse_events([], _deltas("Hal", "o", fail_after=1)))

    assert events == [
        'data: {"sources":[]}\n\n',
        'data: {"text":"Hal"}\n\n',
        'data: {"error":"stream interrupted"}\n\n',
    ]


async def test_non_ascii_text_is_not_escaped():
    assert format_event({"text": "Keselamatan ≥ produktivitas"}) == (
        'data: {"text":"Keselamatan ≥ produktivitas"}\n\n'
    )


async def test_closing_the_stream_closes_upstream():
    """Test that a client disconnect propagates aclose to the provider stream."""
    closed = []
    events = sse_events([], _deltas("a", "b", "c", closed=closed))

    assert await events.__anext__() == 'data: {"sources":[]}\n\n'
    assert await events.__anext__() == 'data: {"text":"a"}\n\n'
    await events.aclose()

    assert closed == [True]


async def test_prime_stream_raises_before_first_delta():
    with pytest.raises(ProviderUnavailableError):
        await prime_stream(_deltas("x", fail_after=0))


async def test_prime_stream_replays_first_delta():
    closed = []
    primed = await prime_stream(_deltas("Hal", "o", closed=closed))

    assert await _collect(primed) == ["Hal", "o"]
    assert closed == [True]


async def test_prime_stream_of_empty_upstream():
    primed = await prime_stream(_deltas())

    assert await _collect(primed) == []


async def test_primed_stream_closes_upstream_on_aclose():
    closed = []
    primed = await prime_stream(_deltas("a", "b", closed=closed))

    assert await primed.__anext__() == "a"
    await primed.aclose()

    assert closed == [True]


async def test_cancelled_consumer_closes_upstream():
    closed = []
    started = asyncio.Event()

    async def slow():
        try:
            yield "a"
            started.set()
            await asyncio.sleep(10)
            yield "b"
        finally:
            closed.append(True)

    events = sse_events([], slow())

    async def consume():
        async for _ in events:
            pass

    task = asyncio.create_task(consume())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await events.aclose()

    assert closed == [True]


def test_decoder_handles_chunks_split_anywhere():
    """Test that lines and multi-byte characters split across chunks are reassembled."""
    body = 'data: {"text":"Hal≥"}\n\ndata: {"text":"o"}\n\ndata: [DONE]\n\n'.encode("utf-8")
    decoder = SSEDecoder()
    payloads = []

    for i in range(len(body)):
        payloads.extend(decoder.feed(body[i:i + 1]))
    payloads.extend(decoder.flush())

    assert payloads == ['{"text":"Hal≥"}', '{"text":"o"}', "[DONE]"]


def test_decoder_skips_comments_and_joins_multiline_data():
    decoder = SSEDecoder()

    payloads = decoder.feed(": keep-alive\r\nevent: message\r\ndata: line one\r\ndata: line two\r\n\r\n")

    assert payloads == ["line one\nline two"]


def test_decoder_flushes_unterminated_event():
    decoder = SSEDecoder()

    assert decoder.feed('data: {"text":"akhir"}') == []
    assert decoder.flush() == ['{"text":"akhir"}']


def test_decode_chat_stream_round_trip():
    body = (
        'data: {"sources":[]}\n\n'
        'data: {"text":"Hal"}\n\n'
        "data: not json\n\n"
        'data: {"text":"o"}\n\n'
        "data: [DONE]\n\n"
    )

    events = decode_chat_stream(body)

    assert [(e.kind, e.value) for e in events] == [
        ("sources", []),
        ("text", "Hal"),
        ("text", "o"),
        ("done", None),
    ]
