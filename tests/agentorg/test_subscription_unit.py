"""Unit tests for the reconnecting event subscription and dispatcher.

The subscription endpoint is simulated with httpx.MockTransport; reconnect
delays are zero so the tests run instantly.
"""

import asyncio
from typing import List

import httpx
import pytest

from src.agentorg.stream.reader import SSEEvent
from src.agentorg.stream.subscription import (
    EventDispatcher,
    EventSubscription,
    SubscriptionError,
)


def run_async(coro):
    return asyncio.run(coro)


URL = "http://agentorg.test/api/events"


# =============================================================================
# EventSubscription
# =============================================================================


class TestEventSubscription:
    def test_delivers_events_and_ends_on_clean_close(self):
        body = b'event: connected\ndata: {"ok":true}\n\nevent: task_update\ndata: {"id":1}\n\n'

        async def scenario():
            received: List[SSEEvent] = []
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))
            )
            subscription = EventSubscription(URL, on_event=received.append, client=client, reconnect_delay=0)
            subscription.start()
            await asyncio.wait_for(subscription.wait_closed(), timeout=5)
            await client.aclose()
            return received, subscription.connections

        received, connections = run_async(scenario())
        assert [e.event for e in received] == ["connected", "task_update"]
        assert connections == 1

    def test_reconnects_after_error_status(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.headers.get("accept"))
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, content=b"data: {}\n\n")

        async def scenario():
            errors: List[Exception] = []
            received: List[SSEEvent] = []
            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            subscription = EventSubscription(
                URL,
                on_event=received.append,
                on_error=errors.append,
                client=client,
                reconnect_delay=0,
            )
            subscription.start()
            await asyncio.wait_for(subscription.wait_closed(), timeout=5)
            await client.aclose()
            return errors, received

        errors, received = run_async(scenario())
        assert len(calls) == 3
        assert calls[0] == "text/event-stream"
        assert len(errors) == 2
        assert all(isinstance(e, SubscriptionError) and e.status_code == 503 for e in errors)
        assert received == [SSEEvent(None, "{}")]

    def test_reconnects_after_transport_error(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=b"")

        async def scenario():
            errors: List[Exception] = []
            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            subscription = EventSubscription(
                URL, on_event=lambda e: None, on_error=errors.append, client=client, reconnect_delay=0
            )
            subscription.start()
            await asyncio.wait_for(subscription.wait_closed(), timeout=5)
            await client.aclose()
            return errors

        errors = run_async(scenario())
        assert len(calls) == 2
        assert isinstance(errors[0], httpx.ConnectError)

    def test_close_cancels_while_waiting_to_reconnect(self):
        async def scenario():
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500))
            )
            subscription = EventSubscription(URL, on_event=lambda e: None, client=client, reconnect_delay=60)
            subscription.start()
            await asyncio.sleep(0.05)
            assert subscription.running
            await subscription.close()
            running = subscription.running
            await client.aclose()
            return running, subscription.connections

        running, connections = run_async(scenario())
        assert running is False
        assert connections == 1

    def test_start_is_idempotent(self):
        async def scenario():
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500))
            )
            subscription = EventSubscription(URL, on_event=lambda e: None, client=client, reconnect_delay=60)
            first = subscription.start()
            second = subscription.start()
            await subscription.close()
            await client.aclose()
            return first is second

        assert run_async(scenario())


# =============================================================================
# EventDispatcher
# =============================================================================


class TestEventDispatcher:
    def test_routes_by_event_name(self):
        updates = []
        dispatcher = EventDispatcher()
        dispatcher.on(EventDispatcher.AGENT_UPDATE, updates.append)

        handled = run_async(dispatcher.dispatch(SSEEvent("agent_update", '{"agentId":"architect"}')))

        assert handled is True
        assert updates == [{"agentId": "architect"}]
        assert dispatcher.dispatched == 1

    def test_unnamed_events_route_to_message(self):
        messages = []
        dispatcher = EventDispatcher()
        dispatcher.on("message", messages.append)

        run_async(dispatcher.dispatch(SSEEvent(None, "[1, 2]")))

        assert messages == [[1, 2]]

    def test_async_handlers_are_awaited(self):
        seen = []

        async def handler(payload):
            await asyncio.sleep(0)
            seen.append(payload)

        dispatcher = EventDispatcher()
        dispatcher.on(EventDispatcher.TASK_UPDATE, handler)
        run_async(dispatcher.dispatch(SSEEvent("task_update", '{"id": "t1"}')))

        assert seen == [{"id": "t1"}]

    def test_invalid_json_is_skipped(self):
        dispatcher = EventDispatcher()
        dispatcher.on(EventDispatcher.TASK_UPDATE, lambda payload: pytest.fail("should not dispatch"))

        handled = run_async(dispatcher.dispatch(SSEEvent("task_update", "{not json")))

        assert handled is False
        assert dispatcher.skipped == 1

    def test_unregistered_event_is_skipped(self):
        dispatcher = EventDispatcher()
        assert run_async(dispatcher.dispatch(SSEEvent("unknown", "{}"))) is False
        assert dispatcher.skipped == 1
