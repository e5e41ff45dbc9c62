"""Project repository collaborator.

The project repository owns persisted PipelineProject records. The
execution core only reads projects and proposes updates; this module
defines the interface it relies on and an in-memory implementation for
local development and tests.

Source:
- src/agentorg/projects/models.py (PipelineProject)
"""

import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

from src.agentorg.projects.models import PipelineProject, ProjectStatus


logger = logging.getLogger(__name__)


@runtime_checkable
class ProjectRepository(Protocol):
    """Protocol defining the interface for project persistence.

    Implementations must store copies: callers may keep mutating the
    instance they passed to ``save``.
    """

    async def get(self, project_id: str) -> Optional[PipelineProject]:
        """Get a project by id.

        Args:
            project_id: The project identifier.

        Returns:
            The project if found, None otherwise.
        """
        ...

    async def save(self, project: PipelineProject) -> None:
        """Create or replace a project.

        Args:
            project: The project to persist.

        Raises:
            Exception: If the save operation fails.
        """
        ...

    async def list_all(self) -> List[PipelineProject]:
        """List all persisted projects."""
        ...

    async def delete(self, project_id: str) -> bool:
        """Delete a project.

        Returns:
            True if the project existed and was removed.
        """
        ...


class InMemoryProjectRepository:
    """Dictionary-backed ProjectRepository.

    Stores deep copies so that persisted records are snapshots of the
    project at save time.
    """

    def __init__(self, projects: Optional[List[PipelineProject]] = None) -> None:
        self._projects: Dict[str, PipelineProject] = {}
        for project in projects or []:
            self._projects[project.id] = project.model_copy(deep=True)

    async def get(self, project_id: str) -> Optional[PipelineProject]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project is not None else None

    async def save(self, project: PipelineProject) -> None:
        self._projects[project.id] = project.model_copy(deep=True)
        logger.debug(
            "Project saved",
            extra={
                "project_id": project.id,
                "stage_index": project.stage_index,
                "status": project.status.value,
            },
        )

    async def list_all(self) -> List[PipelineProject]:
        return [p.model_copy(deep=True) for p in self._projects.values()]

    async def list_by_status(self, status: ProjectStatus) -> List[PipelineProject]:
        return [
            p.model_copy(deep=True)
            for p in self._projects.values()
            if p.status == status
        ]

    async def delete(self, project_id: str) -> bool:
        return self._projects.pop(project_id, None) is not None

    def clear(self) -> None:
        self._projects.clear()
