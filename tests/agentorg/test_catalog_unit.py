"""Unit tests for the stage catalog."""

import pytest

from src.agentorg.catalog import (
    DEFAULT_AGENT_ID,
    STAGES,
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


class TestCatalogShape:
    def test_ten_stages_in_order(self):
        assert count() == 10
        assert last_index() == 9
        assert [stage_number(s.name) for s in STAGES] == list(range(1, 11))

    def test_every_stage_but_launch_declares_deliverable(self):
        keys = [s.deliverable_key for s in STAGES]
        assert keys[-1] is None
        assert all(keys[:-1])
        assert len(set(keys[:-1])) == 9

    def test_descriptors_are_immutable(self):
        with pytest.raises(Exception):
            STAGES[0].name = "changed"


class TestLookups:
    @pytest.mark.parametrize("index", [-1, 10, 100])
    def test_out_of_range_returns_none(self, index):
        assert stage_at(index) is None

    def test_stage_at(self):
        assert stage_at(2).name == "3. Spec"
        assert stage_at(2).deliverable_key == "spec"

    @pytest.mark.parametrize("index,expected", [(0, False), (8, False), (9, True), (12, True)])
    def test_is_final(self, index, expected):
        assert is_final(index) is expected

    def test_short_name(self):
        assert short_name(STAGES[1]) == "Research"
        assert short_name(STAGES[9]) == "Launched"

    def test_stage_label(self):
        assert stage_label(5) == "Development"
        assert stage_label(42) == ""

    def test_stage_number_without_prefix(self):
        assert stage_number("Research") == 0


class TestAgentMapping:
    def test_agent_for_stage(self):
        assert agent_id_for_stage(0) == "ceo"
        assert agent_id_for_stage(1) == "product_researcher"
        assert agent_id_for_stage(5) == "developer"
        assert agent_id_for_stage(9) == "ceo"

    def test_unknown_label_falls_back_to_ceo(self):
        assert agent_id_for_label("Intern") == DEFAULT_AGENT_ID

    def test_out_of_range_stage_falls_back_to_ceo(self):
        assert agent_id_for_stage(99) == DEFAULT_AGENT_ID

    def test_deliverable_names(self):
        assert deliverable_name("testReport") == "Test Report"
        assert deliverable_name(None) is None
        assert deliverable_name("unknown") is None
