"""Unit tests for stage task generation."""

from datetime import datetime, timezone

import pytest

from src.agentorg.catalog import count
from src.agentorg.projects.models import PipelineProject, ProjectPriority
from src.agentorg.tasks import (
    StageNotFoundError,
    StreamEntryType,
    TaskPriority,
    TaskStatus,
    create_task_for_stage,
    map_priority,
)


def _make_project(**overrides) -> PipelineProject:
    fields = {"id": "proj_1", "title": "Acme Notes", "priority": ProjectPriority.HIGH}
    fields.update(overrides)
    return PipelineProject(**fields)


class TestCreateTaskForStage:
    def test_title_and_assignment(self):
        task = create_task_for_stage(_make_project(), 1)

        assert task.title == "Research: Acme Notes"
        assert task.assigned_to == "product_researcher"
        assert task.project_id == "proj_1"
        assert task.stage_index == 1
        assert task.status == TaskStatus.PENDING
        assert task.progress == 0

    def test_templated_description(self):
        task = create_task_for_stage(_make_project(), 2)
        assert task.description.startswith('Create product specification for "Acme Notes"')

    def test_seeded_stream_entry(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        task = create_task_for_stage(_make_project(), 0, now=now)

        assert task.current_step == "Initializing Intake phase..."
        assert len(task.stream_output) == 1
        entry = task.stream_output[0]
        assert entry.type == StreamEntryType.THOUGHT
        assert entry.agent_id == "ceo"
        assert entry.content == 'Starting Intake phase for "Acme Notes"...'
        assert entry.timestamp == now
        assert task.created_at == now

    @pytest.mark.parametrize("index", range(count()))
    def test_every_stage_produces_a_task(self, index):
        task = create_task_for_stage(_make_project(), index)
        assert task.title.endswith(": Acme Notes")
        assert task.description

    @pytest.mark.parametrize("index", [-1, 10])
    def test_unknown_stage_raises(self, index):
        with pytest.raises(StageNotFoundError) as exc_info:
            create_task_for_stage(_make_project(), index)
        assert exc_info.value.stage_index == index

    def test_fresh_task_per_attempt(self):
        project = _make_project()
        assert create_task_for_stage(project, 3).id != create_task_for_stage(project, 3).id


class TestPriorityMapping:
    @pytest.mark.parametrize(
        "project_priority,task_priority",
        [
            (ProjectPriority.CRITICAL, TaskPriority.CRITICAL),
            (ProjectPriority.HIGH, TaskPriority.HIGH),
            (ProjectPriority.MEDIUM, TaskPriority.MEDIUM),
            (ProjectPriority.LOW, TaskPriority.LOW),
            (None, TaskPriority.MEDIUM),
        ],
    )
    def test_map_priority(self, project_priority, task_priority):
        assert map_priority(project_priority) == task_priority

    def test_task_inherits_project_priority(self):
        task = create_task_for_stage(_make_project(priority=ProjectPriority.LOW), 4)
        assert task.priority == TaskPriority.LOW
