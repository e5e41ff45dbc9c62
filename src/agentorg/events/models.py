"""Pipeline event models for observability.

This module defines the data models for pipeline events, including:
- EventType: Enum of all event types emitted by the execution controller
- PipelineEvent: Structured event with project id, timestamp and details

Events feed the dashboard's event log, structured logs and Prometheus
metrics. They describe what happened; they are never used to drive the
pipeline itself.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the execution controller.

    Attributes:
        STATE_TRANSITION: The execution state changed (start, pause,
            resume, skip, restart, stop).
        TASK_CREATED: A task was generated for a stage attempt.
        TASK_COMPLETED: A stage task finished and was archived.
        STAGE_ADVANCED: The project moved to the next stage.
        DELIVERABLE_CREATED: A stage artifact URL was recorded.
        ERROR: A stage attempt failed or was refused by the gating rule.
        COMPLETION: The project finished the final stage.
        TIMEOUT: The remote stream exceeded the configured read timeout.
    """

    STATE_TRANSITION = "state_transition"
    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    STAGE_ADVANCED = "stage_advanced"
    DELIVERABLE_CREATED = "deliverable_created"
    ERROR = "error"
    COMPLETION = "completion"
    TIMEOUT = "timeout"


class PipelineEvent(BaseModel):
    """Structured event emitted by the execution controller.

    Attributes:
        event_type: The category of event.
        project_id: The project the event concerns.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        STATE_TRANSITION: operation, status, stage_index
        TASK_CREATED / TASK_COMPLETED: task_id, agent_id, stage,
            duration_seconds (completed only)
        STAGE_ADVANCED: from_stage_index, to_stage_index
        DELIVERABLE_CREATED: key, url
        ERROR: stage, reason, error_message
        COMPLETION: duration_seconds
        TIMEOUT: stage, timeout_seconds

    Example:
        >>> event = PipelineEvent(
        ...     event_type=EventType.STAGE_ADVANCED,
        ...     project_id="proj_1",
        ...     details={"from_stage_index": 1, "to_stage_index": 2},
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    project_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the project the event concerns",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary suitable for structured logging.

        Example:
            >>> event.to_log_dict()["event_type"]
            'stage_advanced'
        """
        return {
            "event_type": self.event_type.value,
            "project_id": self.project_id,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
