"""Event emitter implementations for pipeline observability.

This module defines an abstract EventEmitter interface and concrete
implementations for different event sinks:

- LoggingEventEmitter: Emits events as structured log entries
- RecentEventsEmitter: Keeps a bounded, newest-first event log
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- NullEventEmitter: Discards events

The controller emits events without knowing which sinks are configured;
``create_event_emitter`` builds the sink set from configuration.

Source:
- src/agentorg/events/models.py (PipelineEvent, EventType)
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Deque, List, Optional

from src.agentorg.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)

DEFAULT_EVENT_LOG_SIZE = 100


class EventSinkType(str, Enum):
    """Types of event sinks supported by the controller.

    Attributes:
        LOGGING: Emit events as structured log entries.
        METRICS: Emit events as Prometheus metrics.
        MEMORY: Keep the most recent events in memory for the dashboard.
    """

    LOGGING = "logging"
    METRICS = "metrics"
    MEMORY = "memory"


class EventEmitter(ABC):
    """Abstract base class for pipeline event emitters.

    Implementations should be non-blocking and fault-tolerant: emit()
    failures must not disturb the pipeline.
    """

    @abstractmethod
    async def emit(self, event: PipelineEvent) -> None:
        """Emit a pipeline event.

        Args:
            event: The pipeline event to emit.
        """
        pass

    async def close(self) -> None:
        """Release resources. The default implementation does nothing."""
        pass


class LoggingEventEmitter(EventEmitter):
    """Event emitter that writes events as structured log entries.

    Log levels by event type:
    - ERROR: ERROR level
    - TIMEOUT: WARNING level
    - TASK_CREATED, DELIVERABLE_CREATED: DEBUG level
    - everything else: INFO level

    Example:
        >>> emitter = LoggingEventEmitter()
        >>> await emitter.emit(event)
        # Logs: INFO - Pipeline event: stage_advanced for proj_1
    """

    def __init__(self, logger_name: Optional[str] = None):
        """Initialize the logging event emitter.

        Args:
            logger_name: Optional logger name. If not provided, uses
                         the module logger.
        """
        self._logger = logging.getLogger(logger_name) if logger_name else logger
        self._log_level_map = {
            EventType.STATE_TRANSITION: logging.INFO,
            EventType.TASK_CREATED: logging.DEBUG,
            EventType.TASK_COMPLETED: logging.INFO,
            EventType.STAGE_ADVANCED: logging.INFO,
            EventType.DELIVERABLE_CREATED: logging.DEBUG,
            EventType.ERROR: logging.ERROR,
            EventType.COMPLETION: logging.INFO,
            EventType.TIMEOUT: logging.WARNING,
        }

    async def emit(self, event: PipelineEvent) -> None:
        log_level = self._log_level_map.get(event.event_type, logging.INFO)
        self._logger.log(
            log_level,
            "Pipeline event: %s for %s",
            event.event_type.value,
            event.project_id,
            extra=event.to_log_dict(),
        )


class RecentEventsEmitter(EventEmitter):
    """Event emitter that keeps the most recent events, newest first.

    Backs the dashboard's event log. Older events are dropped once
    ``maxlen`` events are held.

    Attributes:
        maxlen: Maximum number of events kept.
    """

    def __init__(self, maxlen: int = DEFAULT_EVENT_LOG_SIZE):
        if maxlen < 1:
            raise ValueError("maxlen must be at least 1")
        self.maxlen = maxlen
        self._events: Deque[PipelineEvent] = deque(maxlen=maxlen)

    async def emit(self, event: PipelineEvent) -> None:
        self._events.appendleft(event)

    def recent(
        self,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PipelineEvent]:
        """Return held events, newest first, optionally filtered by project."""
        events = [
            e for e in self._events
            if project_id is None or e.project_id == project_id
        ]
        return events[:limit] if limit is not None else events

    def clear(self) -> None:
        self._events.clear()


class CompositeEventEmitter(EventEmitter):
    """Event emitter that delegates to multiple child emitters.

    Failures in one emitter do not affect others: each child is called
    independently and errors are logged, not propagated.

    Example:
        >>> composite = CompositeEventEmitter([LoggingEventEmitter(), MetricsEventEmitter()])
        >>> await composite.emit(event)  # Emits to both sinks
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    def remove_emitter(self, emitter: EventEmitter) -> bool:
        """Remove a child emitter.

        Returns:
            True if the emitter was found and removed, False otherwise.
        """
        try:
            self._emitters.remove(emitter)
            return True
        except ValueError:
            return False

    @property
    def emitters(self) -> List[EventEmitter]:
        """Read-only copy of the child emitters."""
        return list(self._emitters)

    async def emit(self, event: PipelineEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event to %s: %s",
                    type(emitter).__name__,
                    str(e),
                    extra={
                        "emitter_type": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "project_id": event.project_id,
                    },
                )

    async def close(self) -> None:
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error(
                    "Failed to close emitter %s: %s",
                    type(emitter).__name__,
                    str(e),
                )


class NullEventEmitter(EventEmitter):
    """Event emitter that discards all events."""

    async def emit(self, event: PipelineEvent) -> None:
        pass


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
    event_log_size: int = DEFAULT_EVENT_LOG_SIZE,
) -> EventEmitter:
    """Create an event emitter for the requested sinks.

    Args:
        sink_types: Event sink types to enable. If None or empty, returns a
                    LoggingEventEmitter.
        logger_name: Optional logger name for the LoggingEventEmitter.
        event_log_size: Capacity of the in-memory event log.

    Returns:
        A single emitter, or a CompositeEventEmitter when several sinks are
        requested.

    Example:
        >>> emitter = create_event_emitter([EventSinkType.LOGGING, EventSinkType.MEMORY])
        >>> isinstance(emitter, CompositeEventEmitter)
        True
    """
    if not sink_types:
        return LoggingEventEmitter(logger_name=logger_name)

    emitters: List[EventEmitter] = []

    for sink_type in sink_types:
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            # Imported here because metrics.py imports this module.
            from src.agentorg.events.metrics import MetricsEventEmitter

            emitters.append(MetricsEventEmitter())
        elif sink_type == EventSinkType.MEMORY:
            emitters.append(RecentEventsEmitter(maxlen=event_log_size))
        else:
            logger.warning("Unknown event sink type: %s, skipping", sink_type)

    if not emitters:
        return LoggingEventEmitter(logger_name=logger_name)

    if len(emitters) == 1:
        return emitters[0]

    return CompositeEventEmitter(emitters)


def find_emitter(emitter: EventEmitter, emitter_type: type) -> Optional[EventEmitter]:
    """Return ``emitter`` or its first composite child of ``emitter_type``."""
    if isinstance(emitter, emitter_type):
        return emitter
    if isinstance(emitter, CompositeEventEmitter):
        for child in emitter.emitters:
            if isinstance(child, emitter_type):
                return child
    return None
