"""Pipeline execution state models.

This module defines the controller's own bookkeeping, kept separate from
the persisted project record:
- ExecutionStatus: Running, Paused or Stopped
- PipelinePhase: the derived, user-facing phase (NotStarted, Running,
  Paused, Complete)
- AgentStatus: what an agent is doing right now
- PipelineExecutionState: per-project run/pause/stop bookkeeping
- ALLOWED_FROM: which execution statuses each operation may start from

Invariant: ``PipelineExecutionState.current_stage_index`` equals the owning
project's ``stage_index`` whenever a transition method is invoked.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class PipelinePhase(str, Enum):
    """Derived phase of a project's pipeline.

    Attributes:
        NOT_STARTED: No execution state yet, or stopped mid-pipeline.
        RUNNING: A stage is executing or about to execute.
        PAUSED: Execution is suspended on the current stage.
        COMPLETE: Terminal; the project is at the final stage and done.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"


class AgentStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    COMPLETED = "completed"


class PipelineOperation(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    SKIP = "skip"
    RESTART = "restart"
    STOP = "stop"
    ADVANCE = "advance"


class PipelineExecutionState(BaseModel):
    """Run/pause/stop bookkeeping for one project.

    Created on the first start and destroyed only when the owning project
    is deleted. Stopping sets ``status`` to STOPPED; it never deletes the
    state.

    Attributes:
        project_id: The owning project.
        status: Running, Paused or Stopped.
        current_task_id: The task executing the current stage, if any.
        current_stage_index: Mirrors the project's stage_index.
        started_at: When the pipeline was (re)started.
        paused_at: When the pipeline was paused; None unless paused.
    """

    project_id: str = Field(..., min_length=1)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_task_id: Optional[str] = None
    current_stage_index: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    paused_at: Optional[datetime] = None


# Execution statuses each operation may be applied from.
#
# - START is always allowed and supersedes any previous execution state.
# - PAUSE only interrupts a running pipeline; RESUME only continues a
#   paused one.
# - SKIP and RESTART need an execution state but no particular status.
# - ADVANCE only happens on behalf of a running stage.
# - STOP is always allowed, with or without execution state.
ALLOWED_FROM: Dict[PipelineOperation, FrozenSet[ExecutionStatus]] = {
    PipelineOperation.START: frozenset(ExecutionStatus),
    PipelineOperation.PAUSE: frozenset({ExecutionStatus.RUNNING}),
    PipelineOperation.RESUME: frozenset({ExecutionStatus.PAUSED}),
    PipelineOperation.SKIP: frozenset(ExecutionStatus),
    PipelineOperation.RESTART: frozenset(ExecutionStatus),
    PipelineOperation.STOP: frozenset(ExecutionStatus),
    PipelineOperation.ADVANCE: frozenset({ExecutionStatus.RUNNING}),
}


def is_allowed(operation: PipelineOperation, status: ExecutionStatus) -> bool:
    """Check whether ``operation`` may be applied to an execution in ``status``.

    Example:
        >>> is_allowed(PipelineOperation.PAUSE, ExecutionStatus.RUNNING)
        True
        >>> is_allowed(PipelineOperation.RESUME, ExecutionStatus.RUNNING)
        False
    """
    return status in ALLOWED_FROM.get(operation, frozenset())


class AgentState(BaseModel):
    """Current activity of one agent.

    Attributes:
        agent_id: The agent identifier.
        status: idle, working or completed.
        current_task_id: The task the agent is working on, if any.
    """

    agent_id: str
    status: AgentStatus = AgentStatus.IDLE
    current_task_id: Optional[str] = None
