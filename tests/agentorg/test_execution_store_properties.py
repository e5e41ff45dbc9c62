"""Property-based tests for ExecutionStore invariants.

Properties:
1. Stop sets the project Complete iff it sits on the final stage, else
   Not Started, for every reachable stage index.
2. Skip on a stage whose required deliverable is absent mutates nothing.
3. Pause then resume preserves the current stage index.
4. Every transition keeps the execution's stage index in lockstep with the
   project's stage index.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

import pytest
from hypothesis import given, settings, strategies as st

from src.agentorg.catalog import STAGES, last_index, stage_at
from src.agentorg.execution import (
    DeliverableRequiredError,
    ExecutionStatus,
    ExecutionStore,
    InvalidTransitionError,
)
from src.agentorg.projects.models import PipelineProject, ProjectStatus


stage_indices = st.integers(min_value=0, max_value=last_index())
gated_indices = st.sampled_from([i for i, s in enumerate(STAGES) if s.deliverable_key])

operations = st.lists(
    st.sampled_from(["start", "pause", "resume", "skip", "restart", "stop", "advance", "deliver"]),
    max_size=25,
)


def _store_at(stage_index: int, deliverables=None) -> ExecutionStore:
    store = ExecutionStore()
    store.add_project(
        PipelineProject(
            id="p1",
            title="Acme",
            stage_index=stage_index,
            deliverables=deliverables or {},
        )
    )
    return store


class TestStopProperty:
    @given(stage_index=stage_indices, started=st.booleans())
    @settings(max_examples=100)
    def test_stop_status_depends_only_on_final_stage(self, stage_index, started):
        store = _store_at(stage_index)
        if started:
            store.start_pipeline("p1")

        store.stop_pipeline("p1")

        expected = ProjectStatus.COMPLETE if stage_index == last_index() else ProjectStatus.NOT_STARTED
        assert store.get_project("p1").status == expected


class TestSkipNoOpProperty:
    @given(stage_index=gated_indices, paused=st.booleans())
    @settings(max_examples=100)
    def test_skip_without_deliverable_is_no_op(self, stage_index, paused):
        store = _store_at(stage_index)
        store.start_pipeline("p1")
        if paused:
            store.pause_pipeline("p1")
        before = (store.get_execution("p1"), store.get_project("p1"))

        with pytest.raises(DeliverableRequiredError):
            store.skip_stage("p1")

        assert (store.get_execution("p1"), store.get_project("p1")) == before


class TestPauseResumeProperty:
    @given(stage_index=stage_indices)
    @settings(max_examples=100)
    def test_pause_resume_preserves_stage(self, stage_index):
        store = _store_at(stage_index)
        store.start_pipeline("p1")

        store.pause_pipeline("p1")
        state = store.resume_pipeline("p1")

        assert state.current_stage_index == stage_index
        assert store.get_project("p1").stage_index == stage_index


class TestLockstepProperty:
    @given(stage_index=stage_indices, ops=operations)
    @settings(max_examples=100)
    def test_stage_index_lockstep(self, stage_index, ops):
        store = _store_at(stage_index)
        store.start_pipeline("p1")
        previous_index = stage_index

        for op in ops:
            try:
                if op == "start":
                    store.start_pipeline("p1")
                elif op == "pause":
                    store.pause_pipeline("p1")
                elif op == "resume":
                    store.resume_pipeline("p1")
                elif op == "skip":
                    store.skip_stage("p1")
                elif op == "restart":
                    store.restart_stage("p1")
                elif op == "stop":
                    store.stop_pipeline("p1")
                elif op == "advance":
                    store.advance_stage("p1")
                elif op == "deliver":
                    stage = stage_at(store.get_project("p1").stage_index)
                    if stage.deliverable_key:
                        store.set_deliverable("p1", stage.deliverable_key, "https://artifact")
            except (InvalidTransitionError, DeliverableRequiredError):
                pass

            execution = store.get_execution("p1")
            project = store.get_project("p1")
            assert execution.current_stage_index == project.stage_index
            assert 0 <= project.stage_index <= last_index()
            # Stage index never decreases.
            assert project.stage_index >= previous_index
            previous_index = project.stage_index
            if execution.status == ExecutionStatus.PAUSED:
                assert project.status == ProjectStatus.BLOCKED
