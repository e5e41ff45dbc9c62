"""Pipeline project model.

A PipelineProject is one product moving through the stage catalog. It is
owned by the external project repository; the execution core reads it and
proposes updates that the repository persists.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from src.agentorg.catalog import last_index, stage_at


class ProjectPriority(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ProjectStatus(str, Enum):
    """Persisted status of a project, as shown by the dashboard."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    BLOCKED = "Blocked"
    REVIEW = "Review"
    COMPLETE = "Complete"


class PipelineProject(BaseModel):
    """A project moving through the ten-stage pipeline.

    ``stage`` and ``agent`` are denormalized copies of the current stage
    descriptor, kept for display. They are filled from the catalog when
    omitted.

    Attributes:
        id: Project identifier.
        title: Human title.
        priority: Critical, High, Medium or Low.
        status: Persisted dashboard status.
        stage_index: Index of the current stage (0..9).
        stage: Name of the current stage.
        agent: Agent label of the current stage.
        progress: Fraction of the pipeline completed (0..1).
        deliverables: Deliverable key → URL (None when not yet produced).
    """

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    priority: ProjectPriority = ProjectPriority.MEDIUM
    status: ProjectStatus = ProjectStatus.NOT_STARTED
    stage_index: int = Field(default=0, ge=0, le=last_index())
    stage: str = ""
    agent: str = ""
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    deliverables: Dict[str, Optional[str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_stage_fields(self) -> "PipelineProject":
        descriptor = stage_at(self.stage_index)
        if descriptor is not None:
            if not self.stage:
                self.stage = descriptor.name
            if not self.agent:
                self.agent = descriptor.agent_label
        return self

    def has_deliverable(self, key: str) -> bool:
        """Check whether a deliverable URL has been recorded for ``key``."""
        return bool(self.deliverables.get(key))
