"""Task and stream entry models.

A Task is one execution attempt of a single pipeline stage. It is created
fresh for every attempt and mutated in place by stream events until it is
archived as completed or left in review.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle status of a task.

    PENDING → IN_PROGRESS → COMPLETED (archived) or REVIEW (failed/ungated).
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StreamEntryType(str, Enum):
    THOUGHT = "thought"
    ACTION = "action"
    RESULT = "result"
    ERROR = "error"


class StreamEntry(BaseModel):
    """One unit of narrated progress attached to a task.

    Stream entries are append-only and kept in arrival order.

    Attributes:
        id: Unique entry identifier.
        timestamp: When the entry was recorded (UTC).
        agent_id: The agent that produced the entry.
        type: thought, action, result or error.
        content: Free text.
    """

    id: str = Field(default_factory=lambda: f"stream_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=_utcnow)
    agent_id: str
    type: StreamEntryType
    content: str


class Task(BaseModel):
    """A single stage attempt assigned to one agent.

    Attributes:
        id: Unique task identifier.
        title: "<StageShortName>: <project title>".
        description: Stage-specific description of the work.
        status: Current lifecycle status.
        priority: Priority derived from the project priority.
        assigned_to: Agent id responsible for the stage.
        project_id: Owning project.
        stage_index: Stage this task executes.
        progress: Percentage complete (0-100).
        current_step: Free-text description of the current step.
        stream_output: Ordered, append-only narration.
        created_at: Creation time (UTC).
        updated_at: Last mutation time (UTC).
        completed_at: When the task was archived as completed.
        output: Optional archive note (e.g. "Skipped").
    """

    id: str = Field(default_factory=lambda: f"task_{uuid.uuid4().hex[:12]}")
    title: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: str
    project_id: str
    stage_index: int = Field(..., ge=0)
    progress: float = Field(default=0, ge=0, le=100)
    current_step: str = ""
    stream_output: List[StreamEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    output: Optional[str] = None
