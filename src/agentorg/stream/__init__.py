"""Server-sent event streaming.

- reader: chunk-boundary independent SSE parser (SSEDecoder, read_sse)
- payloads: typed stage execution payloads with explicit parse results
- subscription: reconnecting subscription and name-based dispatcher
"""

from src.agentorg.stream.payloads import (
    CompleteEvent,
    DeliverableEvent,
    NarrationEvent,
    ParseResult,
    ProgressEvent,
    parse_task_event,
)
from src.agentorg.stream.reader import SSEDecoder, SSEEvent, iter_sse, read_sse
from src.agentorg.stream.subscription import (
    DEFAULT_RECONNECT_DELAY_SECONDS,
    EventDispatcher,
    EventSubscription,
    SubscriptionError,
)

__all__ = [
    # Reader
    "SSEDecoder",
    "SSEEvent",
    "iter_sse",
    "read_sse",
    # Payloads
    "CompleteEvent",
    "DeliverableEvent",
    "NarrationEvent",
    "ParseResult",
    "ProgressEvent",
    "parse_task_event",
    # Subscription
    "DEFAULT_RECONNECT_DELAY_SECONDS",
    "EventDispatcher",
    "EventSubscription",
    "SubscriptionError",
]
