"""Pipeline execution controller.

Drives each project through its stage sequence, one remote execution at a
time:

    start → generate task → remote execution → apply stream events
          → gate on deliverable → archive task → advance → next stage

Each running project owns one driver task. The driver loops while the
execution is Running and the previous stage advanced; it exits when a
stage fails, is left ungated, the pipeline finishes, or a control
operation halts it. Control operations (pause, resume, skip, restart,
stop) run under a per-project lock. Each one halts the project's driver
and waits for it to unwind before applying its store transition and
spawning a replacement, so a project never has two drivers.

Every in-flight remote call runs under a CancellationToken issued by the
controller's CancellationArena (one live token per project).

Source:
- src/agentorg/execution/store.py (ExecutionStore)
- src/agentorg/execution/remote.py (RemoteTaskExecutor)
- src/agentorg/execution/tokens.py (CancellationArena)
- src/agentorg/tasks/generator.py (create_task_for_stage)
- src/agentorg/events/emitter.py (EventEmitter)
- src/agentorg/projects/repository.py (ProjectRepository)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from src.agentorg.catalog import stage_at, stage_label
from src.agentorg.events.emitter import EventEmitter, NullEventEmitter
from src.agentorg.events.models import EventType, PipelineEvent
from src.agentorg.execution.models import (
    AgentStatus,
    ExecutionStatus,
    PipelineExecutionState,
    PipelineOperation,
    PipelinePhase,
    is_allowed,
)
from src.agentorg.execution.remote import (
    ExecutionOutcome,
    ExecutionRequest,
    OutcomeStatus,
)
from src.agentorg.execution.store import (
    ExecutionNotFoundError,
    ExecutionStore,
    InvalidTransitionError,
    ProjectNotFoundError,
)
from src.agentorg.execution.tokens import CancellationArena, CancellationToken
from src.agentorg.projects.models import PipelineProject
from src.agentorg.projects.repository import ProjectRepository
from src.agentorg.stream.payloads import (
    CompleteEvent,
    DeliverableEvent,
    NarrationEvent,
    ProgressEvent,
)
from src.agentorg.tasks.generator import create_task_for_stage
from src.agentorg.tasks.models import StreamEntry, StreamEntryType, Task, TaskStatus


logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Execution cancelled"
UNGATED_MESSAGE = "Stage cannot advance: Required deliverable was not created"


@runtime_checkable
class TaskExecutor(Protocol):
    """Anything that can run one stage execution under a token."""

    async def execute(
        self,
        request: ExecutionRequest,
        token: CancellationToken,
        on_event: Callable[[Any], Optional[Awaitable[None]]],
    ) -> ExecutionOutcome:
        ...


@dataclass
class _Driver:
    task: "asyncio.Task[None]"
    halt: asyncio.Event


class ExecutionController:
    """Orchestrates stage execution for every project in the store.

    Attributes:
        store: Owner of execution, project, task and agent state.
        executor: Runs one remote stage execution.
        repository: Persists project updates (optional).
        event_emitter: Receives pipeline events for observability.
        stage_advance_delay: Seconds between an advance and the next stage.
        control_delay: Seconds between skip/restart and re-entering a stage.
        agent_idle_delay: Seconds an agent shows "completed" before idling.
        execution_timeout: Read timeout reported on TIMEOUT events.
    """

    def __init__(
        self,
        store: ExecutionStore,
        executor: TaskExecutor,
        repository: Optional[ProjectRepository] = None,
        event_emitter: Optional[EventEmitter] = None,
        stage_advance_delay: float = 1.0,
        control_delay: float = 0.5,
        agent_idle_delay: float = 1.5,
        execution_timeout: Optional[float] = None,
    ):
        self.store = store
        self.executor = executor
        self.repository = repository
        self.event_emitter = event_emitter or NullEventEmitter()
        self.stage_advance_delay = stage_advance_delay
        self.control_delay = control_delay
        self.agent_idle_delay = agent_idle_delay
        self.execution_timeout = execution_timeout
        self._tokens = CancellationArena()
        self._drivers: Dict[str, _Driver] = {}
        self._idle_timers: Dict[str, asyncio.TimerHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def load_projects(self) -> int:
        """Load every project from the repository into the store."""
        if self.repository is None:
            return 0
        projects = await self.repository.list_all()
        for project in projects:
            self.store.add_project(project)
        logger.info("Loaded projects from repository", extra={"count": len(projects)})
        return len(projects)

    async def register_project(self, project: PipelineProject) -> PipelineProject:
        """Add a project to the store and persist it."""
        self.store.add_project(project)
        await self._persist(project.id)
        return self.store.get_project(project.id)

    async def remove_project(self, project_id: str) -> bool:
        """Stop any activity for a project and drop all of its state."""
        async with self._control_lock(project_id):
            await self._halt_driver(project_id, "removed")
            removed = self.store.remove_project(project_id)
            if removed and self.repository is not None:
                try:
                    await self.repository.delete(project_id)
                except Exception:
                    logger.exception(
                        "Failed to delete project from repository",
                        extra={"project_id": project_id},
                    )
            if removed:
                await self._emit_transition(project_id, PipelineOperation.STOP, None)
            return removed

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    async def start_pipeline(self, project_id: str) -> PipelineExecutionState:
        """Start (or restart from the current stage) a project's pipeline.

        A start on a project that is already running supersedes the
        running execution instead of queueing behind it.

        Raises:
            ProjectNotFoundError: If the project is not registered.
        """
        async with self._control_lock(project_id):
            self._require_project(project_id)
            await self._halt_driver(project_id, "superseded")

            state = self.store.start_pipeline(project_id)
            await self._persist(project_id)
            await self._emit_transition(project_id, PipelineOperation.START, state)
            self._spawn_driver(project_id)
            return state

    async def pause_pipeline(self, project_id: str) -> PipelineExecutionState:
        """Cancel the in-flight execution and suspend the pipeline.

        Raises:
            ProjectNotFoundError: If the project is not registered.
            ExecutionNotFoundError: If the pipeline was never started.
            InvalidTransitionError: If the pipeline is not Running.
        """
        async with self._control_lock(project_id):
            self._check_allowed(project_id, PipelineOperation.PAUSE)
            await self._halt_driver(project_id, "paused")

            state = self.store.pause_pipeline(project_id)
            await self._persist(project_id)
            await self._emit_transition(project_id, PipelineOperation.PAUSE, state)
            return state

    async def resume_pipeline(self, project_id: str) -> PipelineExecutionState:
        """Resume a paused pipeline on the same stage it was paused on.

        Raises:
            ProjectNotFoundError: If the project is not registered.
            ExecutionNotFoundError: If the pipeline was never started.
            InvalidTransitionError: If the pipeline is not Paused.
        """
        async with self._control_lock(project_id):
            self._check_allowed(project_id, PipelineOperation.RESUME)
            await self._halt_driver(project_id, "superseded")

            state = self.store.resume_pipeline(project_id)
            await self._persist(project_id)
            await self._emit_transition(project_id, PipelineOperation.RESUME, state)
            self._spawn_driver(project_id)
            return state

    async def skip_current_stage(self, project_id: str) -> bool:
        """Archive the current stage as skipped and move to the next one.

        Returns:
            True if the stage was skipped. False, with nothing changed, if
            the pipeline has no execution state or the current stage's
            required deliverable is missing.

        Raises:
            ProjectNotFoundError: If the project is not registered.
        """
        async with self._control_lock(project_id):
            self._require_project(project_id)
            execution = self.store.get_execution(project_id)
            if execution is None:
                logger.warning(
                    "Cannot skip: pipeline has no execution state",
                    extra={"project_id": project_id},
                )
                return False

            index = execution.current_stage_index
            if not self.store.can_advance(project_id, index):
                stage = stage_at(index)
                logger.warning(
                    "Cannot skip: %s requires a deliverable",
                    stage.name if stage else index,
                    extra={"project_id": project_id, "stage_index": index},
                )
                return False

            await self._halt_driver(project_id, "skipped")

            state = self.store.skip_stage(project_id)
            await self._persist(project_id)
            await self._emit_transition(project_id, PipelineOperation.SKIP, state)
            if state.status == ExecutionStatus.RUNNING:
                self._spawn_driver(project_id, initial_delay=self.control_delay)
            return True

    async def restart_current_stage(self, project_id: str) -> PipelineExecutionState:
        """Discard the current task and run the current stage again.

        Raises:
            ProjectNotFoundError: If the project is not registered.
            ExecutionNotFoundError: If the pipeline was never started.
        """
        async with self._control_lock(project_id):
            self._check_allowed(project_id, PipelineOperation.RESTART)
            await self._halt_driver(project_id, "restarted")

            state = self.store.restart_stage(project_id)
            await self._persist(project_id)
            await self._emit_transition(project_id, PipelineOperation.RESTART, state)
            self._spawn_driver(project_id, initial_delay=self.control_delay)
            return state

    async def stop_pipeline(self, project_id: str) -> Optional[PipelineExecutionState]:
        """Cancel the in-flight execution and stop the pipeline.

        Returns:
            The stopped execution state, or None if the pipeline was never
            started (the project status is still updated).

        Raises:
            ProjectNotFoundError: If the project is not registered.
        """
        async with self._control_lock(project_id):
            self._require_project(project_id)
            await self._halt_driver(project_id, "stopped")

            state = self.store.stop_pipeline(project_id)
            await self._persist(project_id)
            await self._emit_transition(project_id, PipelineOperation.STOP, state)
            return state

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_execution_status(self, project_id: str) -> Optional[PipelineExecutionState]:
        return self.store.get_execution(project_id)

    def can_advance_stage(self, project_id: str, stage_index: Optional[int] = None) -> bool:
        """Check whether a stage (default: the current one) may be advanced past."""
        project = self.store.get_project(project_id)
        if project is None:
            return False
        index = project.stage_index if stage_index is None else stage_index
        return self.store.can_advance(project_id, index)

    def phase(self, project_id: str) -> PipelinePhase:
        return self.store.phase(project_id)

    def is_active(self, project_id: str) -> bool:
        """Check whether a driver is currently working on the project."""
        driver = self._drivers.get(project_id)
        return driver is not None and not driver.task.done()

    def active_projects(self) -> List[str]:
        return [pid for pid in list(self._drivers) if self.is_active(pid)]

    async def join(self, project_id: str) -> None:
        """Wait until the project's current driver (if any) exits."""
        driver = self._drivers.get(project_id)
        if driver is not None:
            await asyncio.wait({driver.task})

    async def close(self) -> None:
        """Halt every driver and cancel pending agent idle timers."""
        for project_id in list(self._drivers):
            await self._halt_driver(project_id, "shutdown")
        for handle in self._idle_timers.values():
            handle.cancel()
        self._idle_timers.clear()

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def _spawn_driver(self, project_id: str, initial_delay: float = 0.0) -> None:
        halt = asyncio.Event()
        task = asyncio.ensure_future(self._drive(project_id, halt, initial_delay))
        driver = _Driver(task=task, halt=halt)
        self._drivers[project_id] = driver
        task.add_done_callback(lambda t: self._on_driver_done(project_id, driver))

    def _on_driver_done(self, project_id: str, driver: _Driver) -> None:
        if self._drivers.get(project_id) is driver:
            del self._drivers[project_id]
        if driver.task.cancelled():
            return
        exc = driver.task.exception()
        if exc is not None:
            logger.error(
                "Pipeline driver crashed: %s",
                exc,
                exc_info=exc,
                extra={"project_id": project_id},
            )

    async def _halt_driver(self, project_id: str, reason: str) -> None:
        driver = self._drivers.get(project_id)
        self._tokens.cancel(project_id, reason)
        if driver is None:
            return
        driver.halt.set()
        if driver.task is asyncio.current_task():
            return
        await asyncio.wait({driver.task})

    async def _drive(self, project_id: str, halt: asyncio.Event, initial_delay: float) -> None:
        if initial_delay > 0 and await self._wait_halt(halt, initial_delay):
            return

        while not halt.is_set():
            advanced = await self._run_current_stage(project_id, halt)
            if not advanced or halt.is_set():
                return
            execution = self.store.get_execution(project_id)
            if execution is None or execution.status != ExecutionStatus.RUNNING:
                return
            if await self._wait_halt(halt, self.stage_advance_delay):
                return

    @staticmethod
    async def _wait_halt(halt: asyncio.Event, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True if halted meanwhile."""
        try:
            await asyncio.wait_for(halt.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_current_stage(self, project_id: str, halt: asyncio.Event) -> bool:
        """Execute the current stage once.

        Returns:
            True if the stage completed and the pipeline advanced to another
            stage that should run next.
        """
        execution = self.store.get_execution(project_id)
        project = self.store.get_project(project_id)
        if execution is None or project is None:
            return False
        if execution.status != ExecutionStatus.RUNNING:
            logger.debug(
                "Pipeline not in running state",
                extra={"project_id": project_id, "status": execution.status.value},
            )
            return False
        if execution.current_task_id:
            existing = self.store.get_task(execution.current_task_id)
            if existing is not None and existing.status == TaskStatus.IN_PROGRESS:
                return False
        if halt.is_set():
            return False

        index = execution.current_stage_index
        task = create_task_for_stage(project, index, now=self.store.clock())
        self.store.add_task(task)
        task = self.store.update_task(task.id, status=TaskStatus.IN_PROGRESS)
        self.store.set_execution_task(project_id, task.id)
        self.store.set_agent_status(task.assigned_to, AgentStatus.WORKING, task.id)
        token = self._tokens.issue(project_id)

        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.TASK_CREATED,
                project_id=project_id,
                details={
                    "task_id": task.id,
                    "agent_id": task.assigned_to,
                    "stage": stage_label(index),
                },
            )
        )

        try:
            outcome = await self.executor.execute(
                ExecutionRequest.for_task(task, project),
                token,
                self._event_applier(project_id, task.id, task.assigned_to),
            )
        except Exception as exc:
            logger.exception(
                "Stage execution raised",
                extra={"project_id": project_id, "task_id": task.id},
            )
            outcome = ExecutionOutcome(status=OutcomeStatus.FAILED, error=f"Error: {exc}")
        finally:
            self._tokens.release(project_id, token)

        if halt.is_set() and not outcome.cancelled:
            outcome = ExecutionOutcome(status=OutcomeStatus.CANCELLED, error=CANCELLED_MESSAGE)

        if not outcome.succeeded:
            await self._fail_stage(project_id, task, index, outcome)
            return False

        if not self.store.can_advance(project_id, index):
            await self._hold_stage(project_id, task, index)
            return False

        return await self._complete_stage(project_id, task, index)

    async def _fail_stage(
        self,
        project_id: str,
        task: Task,
        index: int,
        outcome: ExecutionOutcome,
    ) -> None:
        self._append(task.id, task.assigned_to, StreamEntryType.ERROR, outcome.error or CANCELLED_MESSAGE)
        self._mark_review(task)

        if outcome.cancelled:
            logger.info(
                "Stage execution cancelled",
                extra={"project_id": project_id, "task_id": task.id, "stage_index": index},
            )
            return

        logger.warning(
            "Stage execution failed: %s",
            outcome.error,
            extra={"project_id": project_id, "task_id": task.id, "stage_index": index},
        )
        if outcome.status == OutcomeStatus.TIMED_OUT:
            event = PipelineEvent(
                event_type=EventType.TIMEOUT,
                project_id=project_id,
                details={"stage": stage_label(index), "timeout_seconds": self.execution_timeout},
            )
        else:
            event = PipelineEvent(
                event_type=EventType.ERROR,
                project_id=project_id,
                details={
                    "stage": stage_label(index),
                    "reason": "execution_failed",
                    "error_message": outcome.error,
                },
            )
        await self._safe_emit(event)

    async def _hold_stage(self, project_id: str, task: Task, index: int) -> None:
        stage = stage_at(index)
        self._append(task.id, task.assigned_to, StreamEntryType.ERROR, UNGATED_MESSAGE)
        self._mark_review(task)
        logger.warning(
            "Stage completed without its required deliverable",
            extra={
                "project_id": project_id,
                "stage_index": index,
                "deliverable_key": stage.deliverable_key if stage else None,
            },
        )
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.ERROR,
                project_id=project_id,
                details={
                    "stage": stage_label(index),
                    "reason": "deliverable_missing",
                    "error_message": UNGATED_MESSAGE,
                },
            )
        )

    async def _complete_stage(self, project_id: str, task: Task, index: int) -> bool:
        archived = self.store.complete_task(task.id)
        self.store.set_agent_status(task.assigned_to, AgentStatus.COMPLETED)
        self._schedule_idle(task.assigned_to, task.id)

        finished = self.store.advance_stage(project_id)
        await self._persist(project_id)

        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.TASK_COMPLETED,
                project_id=project_id,
                details={
                    "task_id": task.id,
                    "agent_id": task.assigned_to,
                    "stage": stage_label(index),
                    "duration_seconds": _seconds_between(archived.created_at, archived.completed_at),
                },
            )
        )

        if finished:
            execution = self.store.get_execution(project_id)
            logger.info("Pipeline complete", extra={"project_id": project_id})
            await self._emit_transition(project_id, PipelineOperation.ADVANCE, execution)
            await self._safe_emit(
                PipelineEvent(
                    event_type=EventType.COMPLETION,
                    project_id=project_id,
                    details={
                        "duration_seconds": _seconds_between(
                            execution.started_at if execution else None,
                            self.store.clock(),
                        ),
                    },
                )
            )
            return False

        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.STAGE_ADVANCED,
                project_id=project_id,
                details={"from_stage_index": index, "to_stage_index": index + 1},
            )
        )
        return True

    def _event_applier(
        self,
        project_id: str,
        task_id: str,
        agent_id: str,
    ) -> Callable[[Any], Awaitable[None]]:
        async def apply(event: Any) -> None:
            if isinstance(event, NarrationEvent):
                self._append(task_id, agent_id, StreamEntryType(event.type), event.content)
            elif isinstance(event, ProgressEvent):
                self.store.update_task_progress(task_id, event.progress, event.step)
            elif isinstance(event, DeliverableEvent):
                self.store.set_deliverable(project_id, event.key, event.url)
                self._append(task_id, agent_id, StreamEntryType.RESULT, f"Deliverable created: {event.url}")
                await self._persist(project_id)
                await self._safe_emit(
                    PipelineEvent(
                        event_type=EventType.DELIVERABLE_CREATED,
                        project_id=project_id,
                        details={"key": event.key, "url": event.url},
                    )
                )
            elif isinstance(event, CompleteEvent):
                self.store.update_task_progress(task_id, 100, "Complete")

        return apply

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _control_lock(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    def _require_project(self, project_id: str) -> None:
        if self.store.get_project(project_id) is None:
            raise ProjectNotFoundError(project_id)

    def _check_allowed(self, project_id: str, operation: PipelineOperation) -> None:
        self._require_project(project_id)
        execution = self.store.get_execution(project_id)
        if execution is None:
            raise ExecutionNotFoundError(project_id)
        if not is_allowed(operation, execution.status):
            raise InvalidTransitionError(project_id, operation, execution.status)

    def _append(self, task_id: str, agent_id: str, entry_type: StreamEntryType, content: str) -> None:
        if self.store.get_task(task_id) is None:
            return
        self.store.append_stream_entry(
            task_id,
            StreamEntry(
                timestamp=self.store.clock(),
                agent_id=agent_id,
                type=entry_type,
                content=content,
            ),
        )

    def _mark_review(self, task: Task) -> None:
        if task.id in {t.id for t in self.store.list_tasks(task.project_id)}:
            self.store.update_task(task.id, status=TaskStatus.REVIEW)
        self.store.set_agent_status(task.assigned_to, AgentStatus.IDLE)

    def _schedule_idle(self, agent_id: str, task_id: str) -> None:
        previous = self._idle_timers.pop(agent_id, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._idle_timers[agent_id] = loop.call_later(
            self.agent_idle_delay, self._idle_agent, agent_id, task_id
        )

    def _idle_agent(self, agent_id: str, task_id: str) -> None:
        self._idle_timers.pop(agent_id, None)
        agent = self.store.get_agent(agent_id)
        if agent.status == AgentStatus.COMPLETED and agent.current_task_id in (None, task_id):
            self.store.set_agent_status(agent_id, AgentStatus.IDLE)

    async def _persist(self, project_id: str) -> None:
        """Save the project's working copy, logging (not raising) failures."""
        if self.repository is None:
            return
        project = self.store.get_project(project_id)
        if project is None:
            return
        try:
            await self.repository.save(project)
        except Exception:
            logger.exception(
                "Failed to persist project",
                extra={"project_id": project_id},
            )

    async def _emit_transition(
        self,
        project_id: str,
        operation: PipelineOperation,
        state: Optional[PipelineExecutionState],
    ) -> None:
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.STATE_TRANSITION,
                project_id=project_id,
                details={
                    "operation": operation.value,
                    "status": state.status.value if state else None,
                    "stage_index": state.current_stage_index if state else None,
                },
            )
        )

    async def _safe_emit(self, event: PipelineEvent) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the pipeline."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit pipeline event",
                extra={
                    "event_type": event.event_type.value,
                    "project_id": event.project_id,
                },
            )


def _seconds_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return max((end - start).total_seconds(), 0.0)

