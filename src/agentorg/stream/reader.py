"""Server-sent event stream reader.

Turns a byte stream (typically an HTTP response body) into a sequence of
``SSEEvent(event, data)`` pairs following the line-oriented protocol:

- ``event:<name>`` sets the pending event name.
- ``data:<text>`` lines accumulate, newline-joined, into the pending payload.
- A blank line terminates the pending event. Events whose data is empty
  after trimming are dropped.
- End-of-stream flushes the pending event without a trailing blank line.
- A carriage return before a newline is stripped.

The decoder keeps partial lines and partial UTF-8 sequences across reads,
so the parsed sequence does not depend on how the bytes were chunked.
"""

import codecs
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, List, Optional


EVENT_FIELD = "event:"
DATA_FIELD = "data:"


@dataclass(frozen=True)
class SSEEvent:
    """One parsed server-sent event.

    Attributes:
        event: The event name, or None if no ``event:`` field was sent.
        data: The trimmed, newline-joined data payload (never empty).
    """

    event: Optional[str]
    data: str


class SSEDecoder:
    """Incremental decoder for the server-sent event protocol.

    Feed raw byte chunks with ``feed()`` and call ``flush()`` once the
    underlying stream ends. Each call returns the events completed by
    that input, in arrival order.

    Example:
        >>> decoder = SSEDecoder()
        >>> decoder.feed(b"event: ping\\nda")
        []
        >>> decoder.feed(b"ta: {}\\n\\n")
        [SSEEvent(event='ping', data='{}')]
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event: Optional[str] = None
        self._data = ""

    def feed(self, chunk: bytes) -> List[SSEEvent]:
        """Decode a chunk and return every event it completes."""
        self._buffer += self._decoder.decode(chunk)
        return self._drain_lines()

    def flush(self) -> List[SSEEvent]:
        """Finish the stream, emitting any trailing line and pending event."""
        self._buffer += self._decoder.decode(b"", final=True)
        events = self._drain_lines()

        if self._buffer:
            line, self._buffer = self._buffer, ""
            event = self._process_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)

        event = self._take_pending()
        if event is not None:
            events.append(event)
        return events

    def _drain_lines(self) -> List[SSEEvent]:
        events: List[SSEEvent] = []
        while True:
            index = self._buffer.find("\n")
            if index < 0:
                break
            line = self._buffer[:index]
            self._buffer = self._buffer[index + 1:]
            if line.endswith("\r"):
                line = line[:-1]
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> Optional[SSEEvent]:
        if line == "":
            return self._take_pending()

        if line.startswith(EVENT_FIELD):
            self._event = line[len(EVENT_FIELD):].strip()
        elif line.startswith(DATA_FIELD):
            part = line[len(DATA_FIELD):].strip()
            self._data = f"{self._data}\n{part}" if self._data else part
        # Comment lines (":...") and unknown fields are ignored.
        return None

    def _take_pending(self) -> Optional[SSEEvent]:
        data = self._data.strip()
        name = self._event
        self._event = None
        self._data = ""
        if not data:
            return None
        return SSEEvent(event=name, data=data)


async def read_sse(chunks: AsyncIterable[bytes]) -> AsyncIterator[SSEEvent]:
    """Yield events parsed from an async byte stream.

    Args:
        chunks: Async iterable of raw bytes, e.g. ``response.aiter_bytes()``.

    Yields:
        SSEEvent instances in arrival order.
    """
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event


def iter_sse(chunks: Iterable[bytes]) -> Iterator[SSEEvent]:
    """Synchronous counterpart of ``read_sse`` for in-memory byte sequences."""
    decoder = SSEDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()
