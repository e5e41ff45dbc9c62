"""Stage tasks: models and generation."""

from src.agentorg.tasks.generator import (
    PRIORITY_MAP,
    STAGE_DESCRIPTIONS,
    StageNotFoundError,
    create_task_for_stage,
    map_priority,
)
from src.agentorg.tasks.models import (
    StreamEntry,
    StreamEntryType,
    Task,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    # Models
    "StreamEntry",
    "StreamEntryType",
    "Task",
    "TaskPriority",
    "TaskStatus",
    # Generator
    "PRIORITY_MAP",
    "STAGE_DESCRIPTIONS",
    "StageNotFoundError",
    "create_task_for_stage",
    "map_priority",
]
