"""Pipeline projects and the repository collaborator that persists them."""

from src.agentorg.projects.models import (
    PipelineProject,
    ProjectPriority,
    ProjectStatus,
)
from src.agentorg.projects.repository import (
    InMemoryProjectRepository,
    ProjectRepository,
)

__all__ = [
    "InMemoryProjectRepository",
    "PipelineProject",
    "ProjectPriority",
    "ProjectRepository",
    "ProjectStatus",
]
