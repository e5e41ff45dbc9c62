"""FastAPI application entry point for the AgentOrg pipeline service.

This module wires the execution controller behind an HTTP surface: project
registration, pipeline control (start, pause, resume, skip, restart, stop),
task and agent views, the recent event log, and Prometheus metrics.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from src.agentorg.catalog import last_index
from src.agentorg.config import AgentOrgSettings, get_settings
from src.agentorg.events.emitter import (
    EventEmitter,
    RecentEventsEmitter,
    create_event_emitter,
    find_emitter,
)
from src.agentorg.events.metrics import generate_metrics_output
from src.agentorg.execution.controller import ExecutionController, TaskExecutor
from src.agentorg.execution.models import AgentStatus
from src.agentorg.execution.remote import RemoteTaskExecutor
from src.agentorg.execution.store import (
    ExecutionNotFoundError,
    ExecutionStore,
    InvalidTransitionError,
    ProjectNotFoundError,
)
from src.agentorg.projects.models import PipelineProject, ProjectPriority
from src.agentorg.projects.repository import InMemoryProjectRepository, ProjectRepository
from src.agentorg.stream.subscription import EventDispatcher, EventSubscription

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: AgentOrgSettings
controller: Optional[ExecutionController] = None
event_emitter: Optional[EventEmitter] = None
subscription: Optional[EventSubscription] = None


class PipelineAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    SKIP = "skip"
    RESTART = "restart"
    STOP = "stop"


class CreateProjectRequest(BaseModel):
    """Body of POST /projects."""

    id: Optional[str] = Field(default=None, min_length=1)
    title: str = Field(..., min_length=1)
    priority: ProjectPriority = ProjectPriority.MEDIUM
    stage_index: int = Field(default=0, ge=0, le=last_index())
    deliverables: Dict[str, Optional[str]] = Field(default_factory=dict)


def _log_configuration(cfg: AgentOrgSettings) -> None:
    """Log configuration values on startup."""
    logger.info("AgentOrg configuration:")
    logger.info(f"  Execution URL: {cfg.execution_url}")
    logger.info(f"  Events URL: {cfg.events_url}")
    logger.info(f"  Reconnect Delay: {cfg.reconnect_delay_seconds}s")
    logger.info(f"  Execution Timeout: {cfg.execution_timeout_seconds}")
    logger.info(f"  Stage Advance Delay: {cfg.stage_advance_delay_seconds}s")
    logger.info(f"  Event Sinks: {[s.value for s in cfg.event_sinks]}")
    logger.info(f"  Host: {cfg.host}")
    logger.info(f"  Port: {cfg.port}")


def _create_executor(cfg: AgentOrgSettings) -> TaskExecutor:
    return RemoteTaskExecutor(
        url=cfg.execution_url,
        timeout_seconds=cfg.execution_timeout_seconds,
        connect_timeout=cfg.connect_timeout_seconds,
    )


def _create_repository(cfg: AgentOrgSettings) -> ProjectRepository:
    """Create the project repository.

    Projects live in memory for the lifetime of the process.
    """
    return InMemoryProjectRepository()


def _build_controller(
    cfg: AgentOrgSettings,
    emitter: EventEmitter,
) -> ExecutionController:
    """Wire store, executor and repository into an ExecutionController."""
    return ExecutionController(
        store=ExecutionStore(),
        executor=_create_executor(cfg),
        repository=_create_repository(cfg),
        event_emitter=emitter,
        stage_advance_delay=cfg.stage_advance_delay_seconds,
        control_delay=cfg.control_delay_seconds,
        agent_idle_delay=cfg.agent_idle_delay_seconds,
        execution_timeout=cfg.execution_timeout_seconds,
    )


def _build_dispatcher(store: ExecutionStore) -> EventDispatcher:
    """Route subscription events into the store."""
    dispatcher = EventDispatcher()

    def on_connected(payload: Any) -> None:
        logger.info("Event stream connected", extra={"payload": payload})

    def on_task_update(payload: Any) -> None:
        logger.debug("Task update received", extra={"payload": payload})

    def on_agent_update(payload: Any) -> None:
        if not isinstance(payload, dict) or "agentId" not in payload:
            logger.warning("Ignoring agent update without agentId")
            return
        try:
            status = AgentStatus(payload.get("status"))
        except ValueError:
            logger.warning(
                "Ignoring agent update with unknown status",
                extra={"agent_id": payload["agentId"], "status": payload.get("status")},
            )
            return
        store.set_agent_status(payload["agentId"], status, payload.get("taskId"))

    dispatcher.on(EventDispatcher.CONNECTED, on_connected)
    dispatcher.on(EventDispatcher.TASK_UPDATE, on_task_update)
    dispatcher.on(EventDispatcher.AGENT_UPDATE, on_agent_update)
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Dependency wiring for the execution controller
    - The optional event subscription
    - Graceful shutdown: drivers halted, HTTP clients closed
    """
    global settings, controller, event_emitter, subscription

    logger.info("AgentOrg pipeline starting up...")

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    _log_configuration(settings)

    event_emitter = create_event_emitter(
        list(settings.event_sinks),
        event_log_size=settings.event_log_size,
    )
    controller = _build_controller(settings, event_emitter)
    await controller.load_projects()

    if settings.events_url:
        subscription = EventSubscription(
            settings.events_url,
            on_event=_build_dispatcher(controller.store).dispatch,
            reconnect_delay=settings.reconnect_delay_seconds,
            connect_timeout=settings.connect_timeout_seconds,
        )
        subscription.start()

    logger.info("AgentOrg pipeline started successfully")

    yield

    logger.info("AgentOrg pipeline shutting down...")

    if subscription is not None:
        await subscription.close()
        subscription = None

    if controller is not None:
        await controller.close()
        close_executor = getattr(controller.executor, "close", None)
        if close_executor is not None:
            await close_executor()

    if event_emitter is not None:
        await event_emitter.close()

    logger.info("AgentOrg pipeline shutdown complete")


app = FastAPI(
    title="AgentOrg Pipeline",
    description="Stage-by-stage execution controller for AI agent org projects",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(ProjectNotFoundError)
async def project_not_found(request: Request, exc: ProjectNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ExecutionNotFoundError)
async def execution_not_found(request: Request, exc: ExecutionNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": exc.message,
            "operation": exc.operation.value,
            "status": exc.status.value,
        },
    )


def _controller() -> ExecutionController:
    if controller is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return controller


def _pipeline_view(ctl: ExecutionController, project_id: str) -> Dict[str, Any]:
    execution = ctl.get_execution_status(project_id)
    current = ctl.store.current_task(project_id)
    return {
        "project_id": project_id,
        "phase": ctl.phase(project_id).value,
        "execution": execution.model_dump(mode="json") if execution else None,
        "current_task": current.model_dump(mode="json") if current else None,
        "can_advance": ctl.can_advance_stage(project_id),
        "active": ctl.is_active(project_id),
    }


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Ready once the controller is wired; reports the event subscription
    state when one is configured.
    """
    status = "ready" if controller is not None else "not_ready"
    dependencies = {"controller": "healthy" if controller is not None else "unavailable"}
    if subscription is not None:
        dependencies["event_stream"] = "connected" if subscription.running else "disconnected"
    return {"status": status, "dependencies": dependencies}


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    """Prometheus metrics endpoint."""
    return generate_metrics_output().decode("utf-8")


@app.get("/projects")
async def list_projects():
    ctl = _controller()
    return [p.model_dump(mode="json") for p in ctl.store.list_projects()]


@app.post("/projects", status_code=201)
async def create_project(body: CreateProjectRequest):
    """Register a project with the pipeline."""
    ctl = _controller()
    fields = body.model_dump(exclude_none=True)
    fields.setdefault("id", f"proj_{uuid.uuid4().hex[:12]}")
    project = PipelineProject(**fields)
    if ctl.store.get_project(project.id) is not None:
        raise HTTPException(status_code=409, detail=f"Project already exists: {project.id}")
    saved = await ctl.register_project(project)
    return saved.model_dump(mode="json")


@app.get("/projects/{project_id}")
async def get_project(project_id: str):
    ctl = _controller()
    project = ctl.store.get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project.model_dump(mode="json")


@app.delete("/projects/{project_id}")
async def delete_project(project_id: str):
    ctl = _controller()
    if not await ctl.remove_project(project_id):
        raise ProjectNotFoundError(project_id)
    return {"status": "deleted", "project_id": project_id}


@app.get("/projects/{project_id}/pipeline")
async def get_pipeline(project_id: str):
    """Execution state, derived phase and current task of a project."""
    return _pipeline_view(_controller(), project_id)


@app.post("/projects/{project_id}/pipeline/{action}")
async def control_pipeline(project_id: str, action: PipelineAction):
    """Apply a control operation to a project's pipeline.

    Unknown projects and never-started pipelines return 404; operations not
    allowed from the current status, and refused skips, return 409.
    """
    ctl = _controller()

    if action == PipelineAction.START:
        await ctl.start_pipeline(project_id)
    elif action == PipelineAction.PAUSE:
        await ctl.pause_pipeline(project_id)
    elif action == PipelineAction.RESUME:
        await ctl.resume_pipeline(project_id)
    elif action == PipelineAction.SKIP:
        if not await ctl.skip_current_stage(project_id):
            raise HTTPException(
                status_code=409,
                detail="Cannot skip: the current stage requires a deliverable",
            )
    elif action == PipelineAction.RESTART:
        await ctl.restart_current_stage(project_id)
    elif action == PipelineAction.STOP:
        await ctl.stop_pipeline(project_id)

    return _pipeline_view(ctl, project_id)


@app.get("/tasks")
async def list_tasks(project_id: Optional[str] = None):
    ctl = _controller()
    return [t.model_dump(mode="json") for t in ctl.store.list_tasks(project_id)]


@app.get("/tasks/history")
async def list_task_history(project_id: Optional[str] = None):
    ctl = _controller()
    return [t.model_dump(mode="json") for t in ctl.store.list_task_history(project_id)]


@app.get("/agents")
async def list_agents():
    ctl = _controller()
    return [a.model_dump(mode="json") for a in ctl.store.list_agents()]


@app.get("/events")
async def list_events(project_id: Optional[str] = None, limit: int = 50):
    """Recent pipeline events, newest first."""
    recent = find_emitter(event_emitter, RecentEventsEmitter) if event_emitter else None
    if recent is None:
        return []
    return [e.model_dump(mode="json") for e in recent.recent(project_id, limit)]


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.agentorg.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
