"""Unit tests for pipeline event models and emitters."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from src.agentorg.events import (
    CompositeEventEmitter,
    EventSinkType,
    EventType,
    LoggingEventEmitter,
    MetricsEventEmitter,
    NullEventEmitter,
    PipelineEvent,
    RecentEventsEmitter,
    create_event_emitter,
    find_emitter,
)


def run_async(coro):
    return asyncio.run(coro)


def make_event(event_type=EventType.STAGE_ADVANCED, project_id="proj_1", **details):
    return PipelineEvent(event_type=event_type, project_id=project_id, details=details)


# =============================================================================
# PipelineEvent
# =============================================================================


class TestPipelineEvent:
    def test_timestamp_defaults_to_utc(self):
        event = make_event()
        assert event.timestamp.tzinfo is not None
        assert event.timestamp.utcoffset().total_seconds() == 0

    def test_empty_project_id_rejected(self):
        with pytest.raises(ValueError):
            PipelineEvent(event_type=EventType.ERROR, project_id="")

    def test_to_log_dict_flattens_details(self):
        event = make_event(from_stage_index=1, to_stage_index=2)
        log = event.to_log_dict()
        assert log["event_type"] == "stage_advanced"
        assert log["project_id"] == "proj_1"
        assert log["from_stage_index"] == 1
        assert log["to_stage_index"] == 2
        assert log["timestamp"] == event.timestamp.isoformat()


# =============================================================================
# LoggingEventEmitter
# =============================================================================


class TestLoggingEventEmitter:
    def test_error_events_log_at_error(self, caplog):
        emitter = LoggingEventEmitter(logger_name="agentorg.test.events")
        event = make_event(EventType.ERROR, stage="Spec", reason="deliverable_missing")

        with caplog.at_level(logging.DEBUG, logger="agentorg.test.events"):
            run_async(emitter.emit(event))

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "Pipeline event: error for proj_1"
        assert record.reason == "deliverable_missing"

    def test_level_per_event_type(self, caplog):
        emitter = LoggingEventEmitter(logger_name="agentorg.test.levels")
        with caplog.at_level(logging.DEBUG, logger="agentorg.test.levels"):
            run_async(emitter.emit(make_event(EventType.TIMEOUT)))
            run_async(emitter.emit(make_event(EventType.TASK_CREATED)))
            run_async(emitter.emit(make_event(EventType.COMPLETION)))

        assert [r.levelno for r in caplog.records] == [logging.WARNING, logging.DEBUG, logging.INFO]


# =============================================================================
# RecentEventsEmitter
# =============================================================================


class TestRecentEventsEmitter:
    def test_newest_first(self):
        emitter = RecentEventsEmitter()
        for i in range(3):
            run_async(emitter.emit(make_event(step=i)))
        assert [e.details["step"] for e in emitter.recent()] == [2, 1, 0]

    def test_bounded(self):
        emitter = RecentEventsEmitter(maxlen=2)
        for i in range(5):
            run_async(emitter.emit(make_event(step=i)))
        assert [e.details["step"] for e in emitter.recent()] == [4, 3]

    def test_filter_and_limit(self):
        emitter = RecentEventsEmitter()
        run_async(emitter.emit(make_event(project_id="a", step=0)))
        run_async(emitter.emit(make_event(project_id="b", step=1)))
        run_async(emitter.emit(make_event(project_id="a", step=2)))

        assert [e.details["step"] for e in emitter.recent(project_id="a")] == [2, 0]
        assert [e.details["step"] for e in emitter.recent(limit=1)] == [2]

    def test_clear(self):
        emitter = RecentEventsEmitter()
        run_async(emitter.emit(make_event()))
        emitter.clear()
        assert emitter.recent() == []

    def test_invalid_maxlen(self):
        with pytest.raises(ValueError):
            RecentEventsEmitter(maxlen=0)


# =============================================================================
# CompositeEventEmitter
# =============================================================================


class TestCompositeEventEmitter:
    def test_emits_to_all_children(self):
        first, second = AsyncMock(), AsyncMock()
        composite = CompositeEventEmitter([first, second])
        event = make_event()

        run_async(composite.emit(event))

        first.emit.assert_awaited_once_with(event)
        second.emit.assert_awaited_once_with(event)

    def test_child_failure_does_not_stop_others(self):
        failing, healthy = AsyncMock(), AsyncMock()
        failing.emit.side_effect = RuntimeError("sink down")
        composite = CompositeEventEmitter([failing, healthy])

        run_async(composite.emit(make_event()))

        healthy.emit.assert_awaited_once()

    def test_add_and_remove(self):
        composite = CompositeEventEmitter()
        child = NullEventEmitter()
        composite.add_emitter(child)
        assert composite.emitters == [child]
        assert composite.remove_emitter(child) is True
        assert composite.remove_emitter(child) is False
        assert composite.emitters == []

    def test_close_closes_children(self):
        child = AsyncMock()
        run_async(CompositeEventEmitter([child]).close())
        child.close.assert_awaited_once()


# =============================================================================
# Factory
# =============================================================================


class TestCreateEventEmitter:
    def test_no_sinks_gives_logging(self):
        assert isinstance(create_event_emitter(), LoggingEventEmitter)
        assert isinstance(create_event_emitter([]), LoggingEventEmitter)

    def test_single_sink(self):
        emitter = create_event_emitter([EventSinkType.MEMORY], event_log_size=7)
        assert isinstance(emitter, RecentEventsEmitter)
        assert emitter.maxlen == 7

    def test_several_sinks_give_composite(self):
        emitter = create_event_emitter(
            [EventSinkType.LOGGING, EventSinkType.METRICS, EventSinkType.MEMORY]
        )
        assert isinstance(emitter, CompositeEventEmitter)
        assert [type(e) for e in emitter.emitters] == [
            LoggingEventEmitter,
            MetricsEventEmitter,
            RecentEventsEmitter,
        ]

    def test_find_emitter(self):
        memory = RecentEventsEmitter()
        composite = CompositeEventEmitter([LoggingEventEmitter(), memory])
        assert find_emitter(composite, RecentEventsEmitter) is memory
        assert find_emitter(memory, RecentEventsEmitter) is memory
        assert find_emitter(NullEventEmitter(), RecentEventsEmitter) is None
