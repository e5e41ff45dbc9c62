"""Unit tests for PipelineProject and the in-memory project repository."""

import asyncio

import pytest
from pydantic import ValidationError

from src.agentorg.projects import (
    InMemoryProjectRepository,
    PipelineProject,
    ProjectPriority,
    ProjectRepository,
    ProjectStatus,
)


def run_async(coro):
    return asyncio.run(coro)


class TestPipelineProject:
    def test_stage_fields_filled_from_catalog(self):
        project = PipelineProject(id="p1", title="Acme", stage_index=3)
        assert project.stage == "4. Architecture"
        assert project.agent == "Architect"

    def test_explicit_stage_fields_kept(self):
        project = PipelineProject(id="p1", title="Acme", stage="Custom", agent="Someone")
        assert project.stage == "Custom"
        assert project.agent == "Someone"

    def test_defaults(self):
        project = PipelineProject(id="p1", title="Acme")
        assert project.priority == ProjectPriority.MEDIUM
        assert project.status == ProjectStatus.NOT_STARTED
        assert project.progress == 0.0
        assert project.deliverables == {}

    @pytest.mark.parametrize("stage_index", [-1, 10])
    def test_stage_index_out_of_range(self, stage_index):
        with pytest.raises(ValidationError):
            PipelineProject(id="p1", title="Acme", stage_index=stage_index)

    def test_has_deliverable_ignores_empty_values(self):
        project = PipelineProject(
            id="p1",
            title="Acme",
            deliverables={"intake": "https://brief", "research": None, "spec": ""},
        )
        assert project.has_deliverable("intake")
        assert not project.has_deliverable("research")
        assert not project.has_deliverable("spec")
        assert not project.has_deliverable("design")


class TestInMemoryProjectRepository:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryProjectRepository(), ProjectRepository)

    def test_save_stores_snapshot(self):
        repo = InMemoryProjectRepository()
        project = PipelineProject(id="p1", title="Acme")

        run_async(repo.save(project))
        project.stage_index = 5

        stored = run_async(repo.get("p1"))
        assert stored.stage_index == 0

    def test_get_missing(self):
        assert run_async(InMemoryProjectRepository().get("missing")) is None

    def test_list_and_filter_by_status(self):
        repo = InMemoryProjectRepository([
            PipelineProject(id="a", title="A", status=ProjectStatus.IN_PROGRESS),
            PipelineProject(id="b", title="B"),
        ])

        assert {p.id for p in run_async(repo.list_all())} == {"a", "b"}
        in_progress = run_async(repo.list_by_status(ProjectStatus.IN_PROGRESS))
        assert [p.id for p in in_progress] == ["a"]

    def test_delete(self):
        repo = InMemoryProjectRepository([PipelineProject(id="a", title="A")])
        assert run_async(repo.delete("a")) is True
        assert run_async(repo.delete("a")) is False
        assert run_async(repo.list_all()) == []

    def test_clear(self):
        repo = InMemoryProjectRepository([PipelineProject(id="a", title="A")])
        repo.clear()
        assert run_async(repo.list_all()) == []
