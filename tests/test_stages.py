"""Tests for the stage machine: transitions, instructions and reply classification."""

import itertools

import pytest

from wfp.stages import (
    DESIGN_PRINCIPLES,
    advance,
    classify_reply,
    instructions_for,
    phase_for_stage,
)
from wfp.state import STAGES

OUTCOMES = [
    "reply",
    "diagram_reply",
    "diagram_requested",
    "build_requested",
    "document_validated",
    "document_rejected",
    "changes_requested",
]


class TestAdvance:
    def test_deterministic_for_every_pair(self):
        for stage, outcome in itertools.product(STAGES, OUTCOMES):
            first = advance(stage, outcome)
            assert advance(stage, outcome) == first
            assert first in STAGES

    @pytest.mark.parametrize("stage, outcome, expected", [
        ("initial", "reply", "clarifying"),
        ("clarifying", "reply", "design_proposed"),
        ("design_proposed", "reply", "design_proposed"),
        ("design_proposed", "diagram_requested", "ready_for_diagram"),
        ("ready_for_diagram", "diagram_reply", "diagram_generated"),
        ("diagram_generated", "build_requested", "building"),
        ("building", "document_validated", "complete"),
        ("building", "document_rejected", "diagram_generated"),
    ])
    def test_main_path(self, stage, outcome, expected):
        assert advance(stage, outcome) == expected

    @pytest.mark.parametrize("stage", STAGES)
    def test_changes_requested_loops_back_to_clarifying(self, stage):
        assert advance(stage, "changes_requested") == "clarifying"

    def test_unknown_pairs_keep_stage(self):
        assert advance("initial", "build_requested") == "initial"
        assert advance("complete", "document_validated") == "complete"
        assert advance("ready_for_diagram", "reply") == "ready_for_diagram"


class TestInstructionsFor:
    @pytest.mark.parametrize("stage", ["initial", "clarifying"])
    def test_tools_mandatory_early(self, mock_config, stage):
        assert instructions_for(stage)["tool_choice"] == "required"

    @pytest.mark.parametrize("stage", ["design_proposed", "ready_for_diagram", "diagram_generated"])
    def test_tools_advisory_later(self, mock_config, stage):
        assert instructions_for(stage)["tool_choice"] == "auto"

    def test_diagram_stage_carries_mermaid_rules(self, mock_config):
        spec = instructions_for("ready_for_diagram")
        assert "CRITICAL MERMAID SYNTAX RULES" in spec["system_instruction"]
        assert "```mermaid" in spec["system_instruction"]
        assert "C{Has New Data}" in spec["system_instruction"]

    def test_conversational_stages_include_design_principles(self, mock_config):
        for stage in ("initial", "clarifying", "design_proposed"):
            assert DESIGN_PRINCIPLES in instructions_for(stage)["system_instruction"]

    def test_history_window_from_config(self, mock_config):
        mock_config["history_window"] = 6
        assert instructions_for("initial")["history_window"] == 6


class TestClassifyReply:
    def test_plain_text(self):
        assert classify_reply("What systems do you use?") == ("text", "What systems do you use?", None, "")

    def test_diagram_reply(self):
        kind, before, diagram, after = classify_reply(
            "Here is the flow:\n```mermaid\ngraph TD\nA[Start] --> B[End]\n```\nLooks good?"
        )
        assert kind == "diagram"
        assert before.strip() == "Here is the flow:"
        assert diagram.strip() == "graph TD\nA[Start] --> B[End]"
        assert after.strip() == "Looks good?"

    def test_mentioning_mermaid_is_not_a_diagram(self):
        assert classify_reply("I will draw a mermaid diagram next.")[0] == "text"


class TestPhaseForStage:
    @pytest.mark.parametrize("stage, phase", [
        ("initial", "clarification"),
        ("clarifying", "clarification"),
        ("design_proposed", "design_proposal"),
        ("ready_for_diagram", "diagram"),
        ("diagram_generated", "diagram"),
        ("building", "build"),
        ("complete", "download"),
    ])
    def test_mapping(self, stage, phase):
        assert phase_for_stage(stage) == phase
