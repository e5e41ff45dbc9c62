"""Unit tests for pipeline Prometheus metrics.

Each test uses its own CollectorRegistry so counters start from zero.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from src.agentorg.events import (
    EventType,
    MetricsEventEmitter,
    PipelineEvent,
    PipelineMetrics,
    generate_metrics_output,
    get_metrics,
)


def run_async(coro):
    return asyncio.run(coro)


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def emitter(registry):
    return MetricsEventEmitter(registry=registry)


def emit(emitter, event_type, project_id="p1", **details):
    run_async(emitter.emit(PipelineEvent(event_type=event_type, project_id=project_id, details=details)))


def gauge(registry, status):
    return registry.get_sample_value("agentorg_executions_by_status", {"status": status})


class TestPipelineMetrics:
    def test_status_gauge_starts_at_zero(self, registry):
        PipelineMetrics(registry=registry)
        for status in ("running", "paused", "stopped"):
            assert gauge(registry, status) == 0

    def test_status_moves_between_labels(self, registry):
        metrics = PipelineMetrics(registry=registry)
        metrics.set_execution_status("p1", "running")
        metrics.set_execution_status("p2", "running")
        metrics.set_execution_status("p1", "paused")

        assert gauge(registry, "running") == 1
        assert gauge(registry, "paused") == 1

        metrics.set_execution_status("p1", None)
        assert gauge(registry, "paused") == 0

    def test_get_metrics_with_registry_is_isolated(self, registry):
        assert get_metrics(registry) is not get_metrics(CollectorRegistry())

    def test_output_contains_metric_names(self, registry):
        PipelineMetrics(registry=registry).record_pipeline_completed()
        output = generate_metrics_output(registry).decode()
        assert "agentorg_pipelines_completed_total 1.0" in output
        assert "agentorg_executions_by_status" in output


class TestMetricsEventEmitter:
    def test_state_transition_updates_gauge(self, emitter, registry):
        emit(emitter, EventType.STATE_TRANSITION, operation="start", status="running")
        emit(emitter, EventType.STATE_TRANSITION, operation="stop", status="stopped")

        assert gauge(registry, "running") == 0
        assert gauge(registry, "stopped") == 1

    def test_task_completed_records_stage_and_duration(self, emitter, registry):
        emit(emitter, EventType.TASK_COMPLETED, stage="Research", duration_seconds=12.5)

        assert registry.get_sample_value(
            "agentorg_stages_completed_total", {"stage": "Research"}
        ) == 1
        assert registry.get_sample_value(
            "agentorg_stage_duration_seconds_sum", {"stage": "Research"}
        ) == 12.5

    def test_error_and_timeout_count_failures(self, emitter, registry):
        emit(emitter, EventType.ERROR, stage="Spec", reason="deliverable_missing")
        emit(emitter, EventType.TIMEOUT, stage="Spec")

        assert registry.get_sample_value(
            "agentorg_stage_failures_total", {"stage": "Spec", "reason": "deliverable_missing"}
        ) == 1
        assert registry.get_sample_value(
            "agentorg_stage_failures_total", {"stage": "Spec", "reason": "timeout"}
        ) == 1

    def test_completion_counts_pipelines(self, emitter, registry):
        emit(emitter, EventType.COMPLETION, duration_seconds=90.0)
        assert registry.get_sample_value("agentorg_pipelines_completed_total") == 1

    def test_bad_details_do_not_raise(self, emitter, registry):
        emit(emitter, EventType.TASK_COMPLETED, stage="Spec", duration_seconds="not-a-number")
        assert registry.get_sample_value(
            "agentorg_stages_completed_total", {"stage": "Spec"}
        ) is None

    def test_uses_given_metrics(self, registry):
        metrics = PipelineMetrics(registry=registry)
        assert MetricsEventEmitter(metrics=metrics).metrics is metrics
