"""Unit tests for typed task input/output bags."""

from atlas.core.models import ConfidenceResult, ExecutionMode, PlanStep
from atlas.core.payloads import (
    StoredPlan,
    TaskInput,
    dump_section,
    merge_payload,
    read_input,
    read_output,
)


def test_merge_payload_is_shallow_and_pure() -> None:
    existing = {"a": 1, "nested": {"x": 1}}
    partial = {"nested": {"y": 2}, "b": 2}

    merged = merge_payload(existing, partial)

    assert merged == {"a": 1, "nested": {"y": 2}, "b": 2}
    assert existing == {"a": 1, "nested": {"x": 1}}
    assert merge_payload(None, None) == {}


def test_unknown_input_keys_survive_round_trip() -> None:
    raw = {"brief": "launch", "plan_current_step": 2}

    parsed = read_input(raw)

    assert parsed.plan is None
    assert parsed.plan_current_step == 2
    assert dump_section(parsed) == raw


def test_stored_plan_round_trip() -> None:
    stored = StoredPlan(
        steps=[PlanStep(title="A", agent_id="a-1", depends_on_index=None)],
        confidence=ConfidenceResult(overall_score=0.7, execution_mode=ExecutionMode.AUTO),
        execution_mode=ExecutionMode.AUTO,
        pattern_key="k",
    )

    dumped = dump_section(TaskInput(plan=stored))

    assert "depends_on_index" not in dumped["plan"]["steps"][0]
    assert read_input(dumped).plan == stored


def test_output_bag_reads_known_sections() -> None:
    output = read_output({"content": "hello", "links": ["a"]})

    assert output.content == "hello"
    assert output.model_extra == {"links": ["a"]}
