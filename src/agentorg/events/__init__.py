"""Pipeline observability events.

Event models, emitters and Prometheus metrics for the execution controller.
"""

from src.agentorg.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    RecentEventsEmitter,
    create_event_emitter,
    find_emitter,
)
from src.agentorg.events.metrics import (
    MetricsEventEmitter,
    PipelineMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.agentorg.events.models import EventType, PipelineEvent

__all__ = [
    "CompositeEventEmitter",
    "EventEmitter",
    "EventSinkType",
    "EventType",
    "LoggingEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    "PipelineEvent",
    "PipelineMetrics",
    "RecentEventsEmitter",
    "create_event_emitter",
    "find_emitter",
    "generate_metrics_output",
    "get_metrics",
]
