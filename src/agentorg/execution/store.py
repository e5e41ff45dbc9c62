"""Execution store for pipeline projects, tasks and agents.

This module implements the ExecutionStore, the single owner of mutable
pipeline state:
- Per-project PipelineExecutionState
- The working copy of each PipelineProject
- Active tasks and the completed-task archive
- Agent activity

Every transition method completes synchronously, so it is atomic with
respect to the event loop. Accessors return copies; state only changes
through the methods below.

Source:
- src/agentorg/execution/models.py (PipelineExecutionState, ALLOWED_FROM)
- src/agentorg/catalog/stages.py (stage_at, is_final)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.agentorg.catalog import is_final, last_index, stage_at
from src.agentorg.execution.models import (
    AgentState,
    AgentStatus,
    ExecutionStatus,
    PipelineExecutionState,
    PipelineOperation,
    PipelinePhase,
    is_allowed,
)
from src.agentorg.projects.models import PipelineProject, ProjectStatus
from src.agentorg.tasks.models import StreamEntry, Task, TaskStatus


logger = logging.getLogger(__name__)

SKIPPED_OUTPUT = "Skipped"


class ProjectNotFoundError(Exception):
    """Raised when a project is not registered with the store.

    Attributes:
        project_id: The project ID that was not found.
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class ExecutionNotFoundError(Exception):
    """Raised when a project has no pipeline execution state.

    Attributes:
        project_id: The project ID without execution state.
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Pipeline execution not found for project: {project_id}")


class TaskNotFoundError(Exception):
    """Raised when a task is not among the active tasks.

    Attributes:
        task_id: The task ID that was not found.
    """

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvalidTransitionError(Exception):
    """Raised when an operation is not allowed from the current status.

    Attributes:
        project_id: The project the operation targeted.
        operation: The attempted operation.
        status: The execution status at the time of the attempt.
        message: Human-readable error message.
    """

    def __init__(
        self,
        project_id: str,
        operation: PipelineOperation,
        status: ExecutionStatus,
        message: Optional[str] = None,
    ):
        self.project_id = project_id
        self.operation = operation
        self.status = status
        self.message = message or (
            f"Cannot {operation.value} pipeline for {project_id} "
            f"while {status.value}"
        )
        super().__init__(self.message)


class DeliverableRequiredError(Exception):
    """Raised when a stage is left without its required deliverable.

    Attributes:
        project_id: The project.
        stage_index: The stage that declares the deliverable.
        deliverable_key: The missing deliverable key.
    """

    def __init__(self, project_id: str, stage_index: int, deliverable_key: str):
        self.project_id = project_id
        self.stage_index = stage_index
        self.deliverable_key = deliverable_key
        super().__init__(
            f"Stage {stage_index} of {project_id} requires deliverable "
            f"'{deliverable_key}'"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStore:
    """In-process owner of pipeline execution state.

    The store enforces the execution preconditions (see ALLOWED_FROM) and
    keeps ``current_stage_index`` in lockstep with the project's
    ``stage_index`` on every transition.

    Attributes:
        clock: Callable returning the current time (UTC).

    Example:
        >>> store = ExecutionStore()
        >>> store.add_project(PipelineProject(id="p1", title="Acme"))
        >>> state = store.start_pipeline("p1")
        >>> state.status
        <ExecutionStatus.RUNNING: 'running'>
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or _utcnow
        self._projects: Dict[str, PipelineProject] = {}
        self._executions: Dict[str, PipelineExecutionState] = {}
        self._tasks: Dict[str, Task] = {}
        self._task_history: List[Task] = []
        self._agents: Dict[str, AgentState] = {}

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, project: PipelineProject) -> None:
        """Register (or replace) the working copy of a project."""
        self._projects[project.id] = project.model_copy(deep=True)

    def get_project(self, project_id: str) -> Optional[PipelineProject]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project is not None else None

    def list_projects(self) -> List[PipelineProject]:
        return [p.model_copy(deep=True) for p in self._projects.values()]

    def remove_project(self, project_id: str) -> bool:
        """Remove a project together with its execution state and active tasks."""
        removed = self._projects.pop(project_id, None) is not None
        self._executions.pop(project_id, None)
        for task_id in [t.id for t in self._tasks.values() if t.project_id == project_id]:
            del self._tasks[task_id]
        return removed

    def set_deliverable(self, project_id: str, key: str, url: str) -> PipelineProject:
        """Record a deliverable URL on the project."""
        project = self._require_project(project_id)
        project.deliverables[key] = url
        return project.model_copy(deep=True)

    def can_advance(self, project_id: str, stage_index: int) -> bool:
        """Check the gating invariant for ``stage_index``.

        A stage without a declared deliverable can always be advanced past.
        A stage with one can only be advanced past once the project has a
        URL recorded for it. Unknown projects never advance.
        """
        project = self._projects.get(project_id)
        if project is None:
            return False
        stage = stage_at(stage_index)
        if stage is None or not stage.deliverable_key:
            return True
        return project.has_deliverable(stage.deliverable_key)

    # ------------------------------------------------------------------
    # Execution transitions
    # ------------------------------------------------------------------

    def get_execution(self, project_id: str) -> Optional[PipelineExecutionState]:
        execution = self._executions.get(project_id)
        return execution.model_copy() if execution is not None else None

    def phase(self, project_id: str) -> PipelinePhase:
        """Derive the user-facing pipeline phase of a project."""
        project = self._require_project(project_id)
        execution = self._executions.get(project_id)

        if execution is None or execution.status == ExecutionStatus.STOPPED:
            if project.status == ProjectStatus.COMPLETE and is_final(project.stage_index):
                return PipelinePhase.COMPLETE
            return PipelinePhase.NOT_STARTED
        if execution.status == ExecutionStatus.PAUSED:
            return PipelinePhase.PAUSED
        return PipelinePhase.RUNNING

    def start_pipeline(self, project_id: str) -> PipelineExecutionState:
        """Create or overwrite the execution state with status RUNNING."""
        project = self._require_project(project_id)

        execution = PipelineExecutionState(
            project_id=project_id,
            status=ExecutionStatus.RUNNING,
            current_stage_index=project.stage_index,
            started_at=self.clock(),
        )
        self._executions[project_id] = execution
        project.status = ProjectStatus.IN_PROGRESS

        self._log_transition(project_id, PipelineOperation.START, execution)
        return execution.model_copy()

    def pause_pipeline(self, project_id: str) -> PipelineExecutionState:
        """Suspend a running pipeline and block the project."""
        project = self._require_project(project_id)
        execution = self._require_execution(project_id, PipelineOperation.PAUSE)

        execution.status = ExecutionStatus.PAUSED
        execution.paused_at = self.clock()
        project.status = ProjectStatus.BLOCKED
        self._idle_current_agent(execution)

        self._log_transition(project_id, PipelineOperation.PAUSE, execution)
        return execution.model_copy()

    def resume_pipeline(self, project_id: str) -> PipelineExecutionState:
        """Continue a paused pipeline on the same stage."""
        project = self._require_project(project_id)
        execution = self._require_execution(project_id, PipelineOperation.RESUME)

        execution.status = ExecutionStatus.RUNNING
        execution.paused_at = None
        project.status = ProjectStatus.IN_PROGRESS

        self._log_transition(project_id, PipelineOperation.RESUME, execution)
        return execution.model_copy()

    def skip_stage(self, project_id: str) -> PipelineExecutionState:
        """Archive the current task as skipped and move to the next stage.

        Skipping past the final stage stops the pipeline instead.

        Raises:
            DeliverableRequiredError: If the current stage's deliverable is
                missing. Nothing is changed in that case.
        """
        project = self._require_project(project_id)
        execution = self._require_execution(project_id, PipelineOperation.SKIP)

        stage = stage_at(execution.current_stage_index)
        if not self.can_advance(project_id, execution.current_stage_index):
            raise DeliverableRequiredError(
                project_id, execution.current_stage_index, stage.deliverable_key
            )

        if execution.current_task_id and execution.current_task_id in self._tasks:
            self.complete_task(execution.current_task_id, output=SKIPPED_OUTPUT)
            task = self._task_history[-1]
            self.set_agent_status(task.assigned_to, AgentStatus.IDLE)

        next_index = execution.current_stage_index + 1
        if next_index > last_index():
            logger.info(
                "Skipped past final stage, stopping pipeline",
                extra={"project_id": project_id},
            )
            return self.stop_pipeline(project_id)

        self._move_to_stage(project, execution, next_index)
        self._log_transition(project_id, PipelineOperation.SKIP, execution)
        return execution.model_copy()

    def restart_stage(self, project_id: str) -> PipelineExecutionState:
        """Discard the current task and run the current stage again."""
        project = self._require_project(project_id)
        execution = self._require_execution(project_id, PipelineOperation.RESTART)

        if execution.current_task_id:
            task = self._tasks.get(execution.current_task_id)
            if task is not None:
                self.discard_task(task.id)
                self.set_agent_status(task.assigned_to, AgentStatus.IDLE)

        execution.current_task_id = None
        execution.status = ExecutionStatus.RUNNING
        execution.paused_at = None
        project.status = ProjectStatus.IN_PROGRESS

        self._log_transition(project_id, PipelineOperation.RESTART, execution)
        return execution.model_copy()

    def stop_pipeline(self, project_id: str) -> Optional[PipelineExecutionState]:
        """Stop the pipeline.

        The project becomes Complete when it sits on the final stage and
        Not Started otherwise. Execution state, if any, is kept with status
        STOPPED.
        """
        project = self._require_project(project_id)
        execution = self._executions.get(project_id)

        project.status = (
            ProjectStatus.COMPLETE
            if is_final(project.stage_index)
            else ProjectStatus.NOT_STARTED
        )

        if execution is None:
            return None

        self._idle_current_agent(execution)
        execution.status = ExecutionStatus.STOPPED
        execution.current_task_id = None
        execution.paused_at = None

        self._log_transition(project_id, PipelineOperation.STOP, execution)
        return execution.model_copy()

    def advance_stage(self, project_id: str) -> bool:
        """Advance a running pipeline after its stage completed.

        Returns:
            True if the pipeline finished (the completed stage was the
            final one), False if it moved to the next stage.

        Raises:
            DeliverableRequiredError: If the current stage's deliverable is
                missing.
        """
        project = self._require_project(project_id)
        execution = self._require_execution(project_id, PipelineOperation.ADVANCE)

        index = execution.current_stage_index
        if not self.can_advance(project_id, index):
            raise DeliverableRequiredError(
                project_id, index, stage_at(index).deliverable_key
            )

        execution.current_task_id = None

        if is_final(index):
            execution.status = ExecutionStatus.STOPPED
            project.status = ProjectStatus.COMPLETE
            project.progress = 1.0
            self._log_transition(project_id, PipelineOperation.ADVANCE, execution)
            return True

        self._move_to_stage(project, execution, index + 1)
        self._log_transition(project_id, PipelineOperation.ADVANCE, execution)
        return False

    def set_execution_task(self, project_id: str, task_id: Optional[str]) -> None:
        execution = self._executions.get(project_id)
        if execution is None:
            raise ExecutionNotFoundError(project_id)
        execution.current_task_id = task_id

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(self, task: Task) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            task = next((t for t in self._task_history if t.id == task_id), None)
        return task.model_copy(deep=True) if task is not None else None

    def current_task(self, project_id: str) -> Optional[Task]:
        execution = self._executions.get(project_id)
        if execution is None or execution.current_task_id is None:
            return None
        return self.get_task(execution.current_task_id)

    def list_tasks(self, project_id: Optional[str] = None) -> List[Task]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if project_id is None or t.project_id == project_id
        ]

    def list_task_history(self, project_id: Optional[str] = None) -> List[Task]:
        return [
            t.model_copy(deep=True)
            for t in self._task_history
            if project_id is None or t.project_id == project_id
        ]

    def update_task(self, task_id: str, **changes: Any) -> Task:
        """Apply field changes to an active task."""
        task = self._require_task(task_id)
        for field, value in changes.items():
            if field not in Task.model_fields:
                raise AttributeError(f"Task has no field '{field}'")
            setattr(task, field, value)
        task.updated_at = self.clock()
        return task.model_copy(deep=True)

    def update_task_progress(
        self,
        task_id: str,
        progress: float,
        step: Optional[str] = None,
    ) -> Task:
        changes: Dict[str, Any] = {"progress": progress}
        if step is not None:
            changes["current_step"] = step
        return self.update_task(task_id, **changes)

    def append_stream_entry(self, task_id: str, entry: StreamEntry) -> None:
        """Append an entry to the task's stream output, in arrival order."""
        task = self._require_task(task_id)
        task.stream_output.append(entry)
        task.updated_at = self.clock()

    def complete_task(self, task_id: str, output: Optional[str] = None) -> Task:
        """Move an active task to the completed archive."""
        task = self._tasks.pop(task_id, None)
        if task is None:
            raise TaskNotFoundError(task_id)

        now = self.clock()
        task.status = TaskStatus.COMPLETED
        task.completed_at = now
        task.updated_at = now
        if output is not None:
            task.output = output
        self._task_history.append(task)
        return task.model_copy(deep=True)

    def discard_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def set_agent_status(
        self,
        agent_id: str,
        status: AgentStatus,
        task_id: Optional[str] = None,
    ) -> None:
        agent = self._agents.setdefault(agent_id, AgentState(agent_id=agent_id))
        agent.status = status
        if status == AgentStatus.WORKING:
            agent.current_task_id = task_id
        elif status == AgentStatus.IDLE:
            agent.current_task_id = None

    def get_agent(self, agent_id: str) -> AgentState:
        agent = self._agents.get(agent_id)
        if agent is None:
            return AgentState(agent_id=agent_id)
        return agent.model_copy()

    def list_agents(self) -> List[AgentState]:
        return [a.model_copy() for a in self._agents.values()]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_project(self, project_id: str) -> PipelineProject:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def _require_execution(
        self,
        project_id: str,
        operation: PipelineOperation,
    ) -> PipelineExecutionState:
        execution = self._executions.get(project_id)
        if execution is None:
            raise ExecutionNotFoundError(project_id)
        if not is_allowed(operation, execution.status):
            logger.warning(
                "Invalid pipeline operation attempted",
                extra={
                    "project_id": project_id,
                    "operation": operation.value,
                    "status": execution.status.value,
                },
            )
            raise InvalidTransitionError(project_id, operation, execution.status)
        return execution

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _idle_current_agent(self, execution: PipelineExecutionState) -> None:
        if not execution.current_task_id:
            return
        task = self._tasks.get(execution.current_task_id)
        if task is not None:
            self.set_agent_status(task.assigned_to, AgentStatus.IDLE)

    def _move_to_stage(
        self,
        project: PipelineProject,
        execution: PipelineExecutionState,
        index: int,
    ) -> None:
        stage = stage_at(index)
        project.stage_index = index
        project.stage = stage.name
        project.agent = stage.agent_label
        project.progress = index / last_index()
        execution.current_stage_index = index
        execution.current_task_id = None

    def _log_transition(
        self,
        project_id: str,
        operation: PipelineOperation,
        execution: PipelineExecutionState,
    ) -> None:
        logger.info(
            "Pipeline transition",
            extra={
                "project_id": project_id,
                "operation": operation.value,
                "status": execution.status.value,
                "stage_index": execution.current_stage_index,
            },
        )
