"""Pipeline execution: state store, cancellation, remote adapter and controller."""

from src.agentorg.execution.controller import ExecutionController, TaskExecutor
from src.agentorg.execution.models import (
    ALLOWED_FROM,
    AgentState,
    AgentStatus,
    ExecutionStatus,
    PipelineExecutionState,
    PipelineOperation,
    PipelinePhase,
    is_allowed,
)
from src.agentorg.execution.remote import (
    DEFAULT_EXECUTION_URL,
    ExecutionOutcome,
    ExecutionRequest,
    OutcomeStatus,
    RemoteTaskExecutor,
)
from src.agentorg.execution.store import (
    SKIPPED_OUTPUT,
    DeliverableRequiredError,
    ExecutionNotFoundError,
    ExecutionStore,
    InvalidTransitionError,
    ProjectNotFoundError,
    TaskNotFoundError,
)
from src.agentorg.execution.tokens import CancellationArena, CancellationToken

__all__ = [
    "ALLOWED_FROM",
    "AgentState",
    "AgentStatus",
    "CancellationArena",
    "CancellationToken",
    "DEFAULT_EXECUTION_URL",
    "DeliverableRequiredError",
    "ExecutionController",
    "ExecutionNotFoundError",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionStatus",
    "ExecutionStore",
    "InvalidTransitionError",
    "OutcomeStatus",
    "PipelineExecutionState",
    "PipelineOperation",
    "PipelinePhase",
    "ProjectNotFoundError",
    "RemoteTaskExecutor",
    "SKIPPED_OUTPUT",
    "TaskExecutor",
    "TaskNotFoundError",
    "is_allowed",
]
