"""Server-sent event transport for streamed chat answers.

Wire format, one event per line pair::

    data: {"sources":[...]}
    data: {"text":"<delta>"}      (repeated)
    data: [DONE]

A failure after the first byte is reported as ``data: {"error":"..."}`` and
the stream ends without ``[DONE]``.
"""
import codecs
import json
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional, Sequence, Union

import structlog

from siasef.models import Source

logger = structlog.get_logger()

DONE_MARKER = "[DONE]"
DONE_EVENT = f"data: {DONE_MARKER}\n\n"

_SENTINEL = object()


def format_event(payload: Dict[str, Any]) -> str:
    """Encode one JSON payload as a ``data:`` event (compact separators)."""
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"data: {body}\n\n"


async def prime_stream(deltas: AsyncGenerator[str, None]) -> AsyncGenerator[str, None]:
    """Fetch the first delta eagerly and return a stream that replays it.

    Upstream failures before the first delta therefore raise here, while the
    caller can still answer with an ordinary error response.
    """
    try:
        first = await deltas.__anext__()
    except StopAsyncIteration:
        first = _SENTINEL
    return _replay(first, deltas)


async def _replay(first: Any, rest: AsyncGenerator[str, None]) -> AsyncGenerator[str, None]:
    try:
        if first is not _SENTINEL:
            yield first
        async for item in rest:
            yield item
    finally:
        await rest.aclose()


async def sse_events(
    sources: Sequence[Source],
    deltas: AsyncGenerator[str, None],
) -> AsyncIterator[str]:
    """Render one chat turn as SSE events.

    Closing this generator (client disconnect) closes ``deltas`` and with it
    the upstream provider stream.
    """
    try:
        yield format_event({"sources": [source.to_wire() for source in sources]})
        async for delta in deltas:
            if delta:
                yield format_event({"text": delta})
        yield DONE_EVENT
    except Exception as e:
        logger.error("chat_stream_failed", error=str(e), error_type=type(e).__name__)
        yield format_event({"error": str(e)})
    finally:
        await deltas.aclose()


async def encode_events(events: AsyncGenerator[str, None]) -> AsyncGenerator[bytes, None]:
    """UTF-8 encode rendered events for the response body."""
    try:
        async for event in events:
            yield event.encode("utf-8")
    finally:
        await events.aclose()


class SSEDecoder:
    """Incremental parser for ``data:`` event streams.

    Network chunks may split lines, events, or multi-byte characters
    anywhere; partial input is buffered until complete.
    """

    def __init__(self):
        self._buffer = ""
        self._data_lines: List[str] = []
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")()

    def feed(self, chunk: Union[str, bytes]) -> List[str]:
        """Consume a chunk and return the data payloads of completed events."""
        if isinstance(chunk, bytes):
            chunk = self._bytes_decoder.decode(chunk)
        self._buffer += chunk

        events: List[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._handle_line(line.rstrip("\r"), events)
        return events

    def flush(self) -> List[str]:
        """Finish the stream, dispatching any event left without a blank line."""
        events: List[str] = []
        tail = self._buffer + self._bytes_decoder.decode(b"", final=True)
        self._buffer = ""
        if tail:
            self._handle_line(tail.rstrip("\r"), events)
        self._handle_line("", events)
        return events

    def _handle_line(self, line: str, events: List[str]) -> None:
        if not line:
            if self._data_lines:
                events.append("\n".join(self._data_lines))
                self._data_lines = []
            return
        if line.startswith(":"):
            return
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data_lines.append(value)


@dataclass
class ChatEvent:
    """One decoded event of the chat transport."""

    kind: str  # "sources", "text", "error" or "done"
    value: Any = None


def parse_chat_event(data: str) -> Optional[ChatEvent]:
    """Interpret one ``data:`` payload of the chat transport.

    Returns None for payloads that are not part of the protocol.
    """
    if data == DONE_MARKER:
        return ChatEvent("done")
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("chat_event_not_json", preview=data[:100])
        return None
    if not isinstance(payload, dict):
        return None
    for kind in ("sources", "text", "error"):
        if kind in payload:
            return ChatEvent(kind, payload[kind])
    return None


def decode_chat_stream(body: Union[str, bytes]) -> List[ChatEvent]:
    """Decode a complete chat transport body into events."""
    decoder = SSEDecoder()
    payloads = decoder.feed(body) + decoder.flush()
    events = [parse_chat_event(data) for data in payloads]
    return [event for event in events if event is not None]
