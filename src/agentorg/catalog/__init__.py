"""Stage catalog for the agent organization pipeline.

The catalog is a fixed, ordered table of ten stages. Every other component
consumes it read-only; the stage index is the only identity used for
progression arithmetic.
"""

from src.agentorg.catalog.stages import (
    AGENT_LABEL_TO_ID,
    DEFAULT_AGENT_ID,
    DELIVERABLE_NAMES,
    STAGES,
    StageDescriptor,
    agent_id_for_label,
    agent_id_for_stage,
    count,
    deliverable_name,
    is_final,
    last_index,
    short_name,
    stage_at,
    stage_label,
    stage_number,
)

__all__ = [
    "AGENT_LABEL_TO_ID",
    "DEFAULT_AGENT_ID",
    "DELIVERABLE_NAMES",
    "STAGES",
    "StageDescriptor",
    "agent_id_for_label",
    "agent_id_for_stage",
    "count",
    "deliverable_name",
    "is_final",
    "last_index",
    "short_name",
    "stage_at",
    "stage_label",
    "stage_number",
]
