"""Stage descriptors and lookup helpers.

This module defines the ordered pipeline stages, the agent responsible for
each stage, and the deliverable (if any) that gates advancement past it.

Lookups never raise: an out-of-range index yields None, and unknown agent
labels fall back to the CEO agent.
"""

import re
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class StageDescriptor(BaseModel):
    """Immutable description of one pipeline stage.

    Attributes:
        name: Numbered display name, e.g. "2. Research".
        agent_label: Human label of the responsible agent.
        description: Short human description of the stage's work.
        icon: Icon tag used by the dashboard.
        deliverable_key: Key of the artifact the stage must produce before
            the pipeline may advance past it, or None.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    agent_label: str = Field(..., min_length=1)
    description: str
    icon: str
    deliverable_key: Optional[str] = None


STAGES: Tuple[StageDescriptor, ...] = (
    StageDescriptor(
        name="1. Intake",
        agent_label="CEO (Claude)",
        description="Project brief and requirements gathering",
        icon="inbox",
        deliverable_key="intake",
    ),
    StageDescriptor(
        name="2. Research",
        agent_label="Product Researcher",
        description="Market research, competitor analysis, GO/NO-GO recommendation",
        icon="search",
        deliverable_key="research",
    ),
    StageDescriptor(
        name="3. Spec",
        agent_label="Product Manager",
        description="Product specification, MVP scope, user stories",
        icon="clipboard-list",
        deliverable_key="spec",
    ),
    StageDescriptor(
        name="4. Architecture",
        agent_label="Architect",
        description="Technical architecture, database schema, API design",
        icon="blocks",
        deliverable_key="architecture",
    ),
    StageDescriptor(
        name="5. Design",
        agent_label="Frontend Designer",
        description="UI/UX mockups, design system, component specs",
        icon="palette",
        deliverable_key="design",
    ),
    StageDescriptor(
        name="6. Development",
        agent_label="Developer",
        description="Build and deploy application",
        icon="code",
        deliverable_key="codebase",
    ),
    StageDescriptor(
        name="7. Testing",
        agent_label="User Testing",
        description="E2E tests, cross-browser, accessibility, performance",
        icon="flask-conical",
        deliverable_key="testReport",
    ),
    StageDescriptor(
        name="8. Security",
        agent_label="Security Engineer",
        description="Vulnerability scan, security clearance",
        icon="shield-check",
        deliverable_key="securityReport",
    ),
    StageDescriptor(
        name="9. Documentation",
        agent_label="Technical Writer",
        description="README, user guide, API docs",
        icon="file-text",
        deliverable_key="documentation",
    ),
    StageDescriptor(
        name="10. Launched",
        agent_label="CEO (Claude)",
        description="Production deployment complete",
        icon="rocket",
        deliverable_key=None,
    ),
)


DEFAULT_AGENT_ID = "ceo"

AGENT_LABEL_TO_ID: Dict[str, str] = {
    "CEO (Claude)": "ceo",
    "Product Researcher": "product_researcher",
    "Product Manager": "product_manager",
    "Architect": "architect",
    "Frontend Designer": "frontend_designer",
    "Developer": "developer",
    "User Testing": "user_testing",
    "Security Engineer": "security_engineer",
    "Technical Writer": "technical_writer",
}

DELIVERABLE_NAMES: Dict[str, str] = {
    "intake": "Project Brief",
    "research": "Research Report",
    "spec": "Product Spec",
    "architecture": "Architecture Doc",
    "design": "Design Mockups",
    "codebase": "Codebase",
    "testReport": "Test Report",
    "securityReport": "Security Audit",
    "documentation": "Documentation",
}

_STAGE_NUMBER_PATTERN = re.compile(r"^(\d+)\.")


def stage_at(index: int) -> Optional[StageDescriptor]:
    """Return the stage at ``index``, or None when out of range.

    Negative indices are out of range; they never wrap around.
    """
    if 0 <= index < len(STAGES):
        return STAGES[index]
    return None


def count() -> int:
    """Return the number of stages in the catalog."""
    return len(STAGES)


def last_index() -> int:
    """Return the index of the final stage."""
    return len(STAGES) - 1


def is_final(index: int) -> bool:
    """Check whether ``index`` is at or beyond the final stage."""
    return index >= len(STAGES) - 1


def short_name(stage: StageDescriptor) -> str:
    """Strip the ordinal prefix from a stage name.

    Example:
        >>> short_name(STAGES[1])
        'Research'
    """
    parts = stage.name.split(". ", 1)
    return parts[1] if len(parts) > 1 else stage.name


def stage_number(name: str) -> int:
    """Extract the ordinal from a stage name ("5. Design" -> 5, else 0)."""
    match = _STAGE_NUMBER_PATTERN.match(name)
    return int(match.group(1)) if match else 0


def agent_id_for_label(agent_label: str) -> str:
    return AGENT_LABEL_TO_ID.get(agent_label, DEFAULT_AGENT_ID)


def agent_id_for_stage(index: int) -> str:
    """Return the agent id responsible for the stage at ``index``."""
    stage = stage_at(index)
    if stage is None:
        return DEFAULT_AGENT_ID
    return agent_id_for_label(stage.agent_label)


def deliverable_name(deliverable_key: Optional[str]) -> Optional[str]:
    """Return the human label of a deliverable key, if known."""
    if not deliverable_key:
        return None
    return DELIVERABLE_NAMES.get(deliverable_key)


def stage_label(index: int) -> str:
    """Short name of the stage at ``index`` ("" when out of range)."""
    stage = stage_at(index)
    return short_name(stage) if stage is not None else ""
