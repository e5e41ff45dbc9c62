"""Prometheus metrics for pipeline observability.

Metrics Defined:
- agentorg_stages_completed_total: Counter of completed stages
- agentorg_stage_failures_total: Counter of failed or refused stage attempts
- agentorg_pipelines_completed_total: Counter of projects that launched
- agentorg_stage_duration_seconds: Histogram of stage execution time
- agentorg_executions_by_status: Gauge of executions per status

The MetricsEventEmitter updates these metrics from pipeline events; the
HTTP surface exposes them at ``/metrics``.

Source:
- src/agentorg/events/models.py (PipelineEvent, EventType)
- src/agentorg/execution/models.py (ExecutionStatus)
"""

import logging
from typing import Dict, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.agentorg.events.emitter import EventEmitter
from src.agentorg.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)


# Stage executions range from seconds to tens of minutes.
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
    3600.0,
)

# These match ExecutionStatus values from execution/models.py
EXECUTION_STATUSES = ("running", "paused", "stopped")


class PipelineMetrics:
    """Container for all pipeline Prometheus metrics.

    Supports custom registries so tests can create isolated instances.

    Attributes:
        registry: The Prometheus registry for these metrics.
        stages_completed_total: Counter, labels: stage.
        stage_failures_total: Counter, labels: stage, reason.
        pipelines_completed_total: Counter.
        stage_duration_seconds: Histogram, labels: stage.
        executions_by_status: Gauge, labels: status.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.stages_completed_total = Counter(
            "agentorg_stages_completed_total",
            "Total number of pipeline stages completed",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.stage_failures_total = Counter(
            "agentorg_stage_failures_total",
            "Total number of stage attempts that failed or were refused",
            labelnames=["stage", "reason"],
            registry=self.registry,
        )

        self.pipelines_completed_total = Counter(
            "agentorg_pipelines_completed_total",
            "Total number of projects that completed the final stage",
            registry=self.registry,
        )

        self.stage_duration_seconds = Histogram(
            "agentorg_stage_duration_seconds",
            "Time spent executing a stage in seconds",
            labelnames=["stage"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.executions_by_status = Gauge(
            "agentorg_executions_by_status",
            "Current number of pipeline executions in each status",
            labelnames=["status"],
            registry=self.registry,
        )

        # Project id -> last known execution status, to keep the gauge exact.
        self._statuses: Dict[str, str] = {}
        for status in EXECUTION_STATUSES:
            self.executions_by_status.labels(status=status).set(0)

    def record_stage_completed(self, stage: str, duration_seconds: Optional[float]) -> None:
        self.stages_completed_total.labels(stage=stage).inc()
        if duration_seconds is not None:
            self.stage_duration_seconds.labels(stage=stage).observe(duration_seconds)

    def record_stage_failed(self, stage: str, reason: str) -> None:
        self.stage_failures_total.labels(stage=stage, reason=reason).inc()

    def record_pipeline_completed(self) -> None:
        self.pipelines_completed_total.inc()

    def set_execution_status(self, project_id: str, status: Optional[str]) -> None:
        """Move ``project_id`` to ``status`` in the executions gauge.

        Args:
            project_id: The project.
            status: New execution status, or None when the execution was
                removed.
        """
        previous = self._statuses.pop(project_id, None)
        if previous in EXECUTION_STATUSES:
            self.executions_by_status.labels(status=previous).dec()
        if status in EXECUTION_STATUSES:
            self._statuses[project_id] = status
            self.executions_by_status.labels(status=status).inc()


_default_metrics: Optional[PipelineMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> PipelineMetrics:
    """Get the global metrics instance, or a new one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return PipelineMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = PipelineMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text-format output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: updates the executions_by_status gauge
    - TASK_COMPLETED: increments stages_completed, records duration
    - ERROR / TIMEOUT: increments stage_failures
    - COMPLETION: increments pipelines_completed

    Attributes:
        metrics: The PipelineMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[PipelineMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> PipelineMetrics:
        return self._metrics

    async def emit(self, event: PipelineEvent) -> None:
        try:
            details = event.details
            if event.event_type == EventType.STATE_TRANSITION:
                self._metrics.set_execution_status(event.project_id, details.get("status"))
            elif event.event_type == EventType.TASK_COMPLETED:
                duration = details.get("duration_seconds")
                self._metrics.record_stage_completed(
                    stage=details.get("stage", "unknown"),
                    duration_seconds=float(duration) if duration is not None else None,
                )
            elif event.event_type == EventType.ERROR:
                self._metrics.record_stage_failed(
                    stage=details.get("stage", "unknown"),
                    reason=details.get("reason", "unknown"),
                )
            elif event.event_type == EventType.TIMEOUT:
                self._metrics.record_stage_failed(
                    stage=details.get("stage", "unknown"),
                    reason="timeout",
                )
            elif event.event_type == EventType.COMPLETION:
                self._metrics.record_pipeline_completed()
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "project_id": event.project_id,
                },
            )
