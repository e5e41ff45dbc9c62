"""Long-lived event subscription with automatic reconnect.

This module provides:
- EventSubscription: opens a server-sent event stream, feeds every parsed
  event to a callback, and reconnects after a fixed delay on any error
  other than explicit cancellation.
- EventDispatcher: decodes JSON payloads and routes them by event name
  (``connected``, ``task_update``, ``agent_update``, ...).

The reconnect delay is constant (3 seconds by default) and there is no
retry ceiling: a subscription keeps retrying until it is closed.

Source:
- src/agentorg/stream/reader.py (read_sse, SSEEvent)
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from src.agentorg.stream.reader import SSEEvent, read_sse


logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 3.0

EventCallback = Callable[[SSEEvent], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], None]
PayloadHandler = Callable[[Any], Union[None, Awaitable[None]]]


class SubscriptionError(Exception):
    """Raised when the subscription endpoint rejects the connection.

    Attributes:
        status_code: HTTP status code of the response.
        url: The subscription URL.
    """

    def __init__(self, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"SSE connection failed: {status_code} ({url})")


async def _maybe_await(result: Union[None, Awaitable[None]]) -> None:
    if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
        await result


class EventSubscription:
    """Reconnecting consumer of a server-sent event endpoint.

    The subscription runs as a background asyncio task. Each parsed event
    is passed to ``on_event``; connection or stream errors are reported to
    ``on_error`` and followed by a reconnect after ``reconnect_delay``
    seconds. A stream that ends cleanly ends the subscription.

    Attributes:
        url: The event stream URL.
        reconnect_delay: Fixed delay in seconds before reconnecting.
        connections: Number of connection attempts made so far.

    Example:
        >>> subscription = EventSubscription(url, on_event=dispatcher.dispatch)
        >>> subscription.start()
        >>> ...
        >>> await subscription.close()
    """

    def __init__(
        self,
        url: str,
        on_event: EventCallback,
        on_error: Optional[ErrorCallback] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = 10.0,
    ):
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.connect_timeout = connect_timeout
        self.connections = 0
        self._on_event = on_event
        self._on_error = on_error
        self._client = client
        self._owns_client = client is None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the background subscription task (idempotent)."""
        if not self.running:
            self._task = asyncio.create_task(self._run())
        return self._task

    async def close(self) -> None:
        """Cancel the subscription and release the HTTP client."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})
        self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def wait_closed(self) -> None:
        """Wait until the subscription task finishes on its own."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=self.connect_timeout))
        return self._client

    async def _run(self) -> None:
        while True:
            try:
                await self._connect_once()
                logger.info("Event stream ended", extra={"url": self.url})
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Event stream error, reconnecting in %.1fs: %s",
                    self.reconnect_delay,
                    exc,
                    extra={"url": self.url, "attempt": self.connections},
                )
                if self._on_error is not None:
                    self._on_error(exc)
            await asyncio.sleep(self.reconnect_delay)

    async def _connect_once(self) -> None:
        self.connections += 1
        client = self._http_client()
        async with client.stream(
            "GET",
            self.url,
            headers={"Accept": "text/event-stream"},
        ) as response:
            if response.status_code >= 400:
                raise SubscriptionError(response.status_code, self.url)

            logger.info(
                "Connected to event stream",
                extra={"url": self.url, "attempt": self.connections},
            )
            async for event in read_sse(response.aiter_bytes()):
                await _maybe_await(self._on_event(event))


class EventDispatcher:
    """Route subscription events to handlers by event name.

    Payloads are decoded as JSON before dispatch. Events without a
    registered handler, and events whose data is not valid JSON, are
    skipped with a log entry.

    Example:
        >>> dispatcher = EventDispatcher()
        >>> dispatcher.on("task_update", handle_task_update)
        >>> subscription = EventSubscription(url, on_event=dispatcher.dispatch)
    """

    CONNECTED = "connected"
    TASK_UPDATE = "task_update"
    AGENT_UPDATE = "agent_update"

    def __init__(self) -> None:
        self._handlers: Dict[str, PayloadHandler] = {}
        self.dispatched = 0
        self.skipped = 0

    def on(self, event_name: str, handler: PayloadHandler) -> None:
        """Register ``handler`` for ``event_name``, replacing any previous one."""
        self._handlers[event_name] = handler

    async def dispatch(self, event: SSEEvent) -> bool:
        """Decode and route one event.

        Returns:
            True if a handler received the event, False if it was skipped.
        """
        name = event.event or "message"
        handler = self._handlers.get(name)
        if handler is None:
            logger.debug("No handler for event", extra={"event_name": name})
            self.skipped += 1
            return False

        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError:
            logger.warning(
                "Failed to parse event data",
                extra={"event_name": name, "data": event.data[:200]},
            )
            self.skipped += 1
            return False

        await _maybe_await(handler(payload))
        self.dispatched += 1
        return True
