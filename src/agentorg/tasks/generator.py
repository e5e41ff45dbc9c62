"""Task generation for pipeline stages.

Builds a fresh Task for a project's stage: title, stage-specific
description, priority mapped from the project, assigned agent, and one
seeded "Starting ..." stream entry. The caller inserts the task into the
execution store.

Source:
- src/agentorg/catalog/stages.py (STAGES, agent_id_for_stage, short_name)
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from src.agentorg.catalog import agent_id_for_stage, short_name, stage_at
from src.agentorg.projects.models import PipelineProject, ProjectPriority
from src.agentorg.tasks.models import (
    StreamEntry,
    StreamEntryType,
    Task,
    TaskPriority,
    TaskStatus,
)


logger = logging.getLogger(__name__)


class StageNotFoundError(Exception):
    """Raised when a stage index does not resolve to a catalog entry.

    Attributes:
        stage_index: The index that was requested.
    """

    def __init__(self, stage_index: int):
        self.stage_index = stage_index
        super().__init__(f"Stage not found: {stage_index}")


PRIORITY_MAP: Dict[ProjectPriority, TaskPriority] = {
    ProjectPriority.CRITICAL: TaskPriority.CRITICAL,
    ProjectPriority.HIGH: TaskPriority.HIGH,
    ProjectPriority.MEDIUM: TaskPriority.MEDIUM,
    ProjectPriority.LOW: TaskPriority.LOW,
}


STAGE_DESCRIPTIONS: Dict[str, Callable[[PipelineProject], str]] = {
    "Intake": lambda p: (
        f'Review project brief and requirements for "{p.title}". Validate scope, '
        "identify key stakeholders, and document initial assumptions."
    ),
    "Research": lambda p: (
        f'Conduct market research for "{p.title}". Analyze competitors, identify '
        "target audience needs, validate problem-solution fit, and provide "
        "GO/NO-GO recommendation."
    ),
    "Spec": lambda p: (
        f'Create product specification for "{p.title}". Define MVP scope, write '
        "user stories, establish acceptance criteria, and create feature "
        "prioritization matrix."
    ),
    "Architecture": lambda p: (
        f'Design technical architecture for "{p.title}". Select technology stack, '
        "design database schema, plan API structure, and document system components."
    ),
    "Design": lambda p: (
        f'Create UI/UX design for "{p.title}". Build wireframes, design mockups, '
        "establish design system, and document component specifications."
    ),
    "Development": lambda p: (
        f'Build and implement "{p.title}". Develop core features, integrate APIs, '
        "implement business logic, and prepare for deployment."
    ),
    "Testing": lambda p: (
        f'Test "{p.title}" application. Run E2E tests, cross-browser testing, '
        "accessibility audit, and performance benchmarks."
    ),
    "Security": lambda p: (
        f'Security audit for "{p.title}". Run vulnerability scans, review '
        "authentication flows, check data handling, and provide security clearance."
    ),
    "Documentation": lambda p: (
        f'Create documentation for "{p.title}". Write README, user guides, API '
        "documentation, and deployment instructions."
    ),
    "Launched": lambda p: (
        f'Final deployment review for "{p.title}". Verify production readiness, '
        "complete launch checklist, and hand off to operations."
    ),
}


def map_priority(priority: Optional[ProjectPriority]) -> TaskPriority:
    """Map a project priority to a task priority (default medium)."""
    if priority is None:
        return TaskPriority.MEDIUM
    return PRIORITY_MAP.get(priority, TaskPriority.MEDIUM)


def create_task_for_stage(
    project: PipelineProject,
    stage_index: int,
    now: Optional[datetime] = None,
) -> Task:
    """Create a new Task for ``project`` at ``stage_index``.

    Args:
        project: The project the task belongs to.
        stage_index: Index of the stage to execute.
        now: Optional creation timestamp (defaults to current UTC time).

    Returns:
        A pending Task with one seeded thought entry.

    Raises:
        StageNotFoundError: If ``stage_index`` is not in the catalog.

    Example:
        >>> task = create_task_for_stage(project, 1)
        >>> task.title
        'Research: Acme Notes'
    """
    stage = stage_at(stage_index)
    if stage is None:
        raise StageNotFoundError(stage_index)

    name = short_name(stage)
    agent_id = agent_id_for_stage(stage_index)
    created = now or datetime.now(timezone.utc)

    describe = STAGE_DESCRIPTIONS.get(name)
    description = describe(project) if describe else stage.description

    task = Task(
        title=f"{name}: {project.title}",
        description=description,
        status=TaskStatus.PENDING,
        priority=map_priority(project.priority),
        assigned_to=agent_id,
        project_id=project.id,
        stage_index=stage_index,
        progress=0,
        current_step=f"Initializing {name} phase...",
        stream_output=[
            StreamEntry(
                timestamp=created,
                agent_id=agent_id,
                type=StreamEntryType.THOUGHT,
                content=f'Starting {name} phase for "{project.title}"...',
            )
        ],
        created_at=created,
        updated_at=created,
    )

    logger.debug(
        "Generated stage task",
        extra={
            "project_id": project.id,
            "task_id": task.id,
            "stage_index": stage_index,
            "agent_id": agent_id,
        },
    )
    return task
