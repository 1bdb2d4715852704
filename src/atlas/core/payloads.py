"""Typed sections of the Task input/output JSON bags.

Each bag is a pydantic model with named sections for the payloads Atlas
writes, and ``extra="allow"`` so keys owned by other writers survive a
round trip.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from atlas.core.models import ConfidenceResult, ExecutionMode, PlanStep, TaskPriority


class StoredPlan(BaseModel):
    """An ExecutionPlan as persisted on the parent task's input."""

    steps: list[PlanStep]
    confidence: ConfidenceResult
    execution_mode: ExecutionMode
    pattern_key: str
    reasoning: str = ""


class TaskInput(BaseModel):
    """Task.input bag."""

    model_config = ConfigDict(extra="allow")

    plan: StoredPlan | None = None
    plan_pattern_key: str | None = None
    plan_current_step: int = 0


class OrchestratorPlanStep(BaseModel):
    """A subtask proposed by preview_plan."""

    title: str
    description: str = ""
    assign_to_agent_type: str
    priority: TaskPriority = TaskPriority.MEDIUM
    depends_on_steps: list[int] | None = None
    skill_slug: str | None = None


class OrchestratorPlan(BaseModel):
    """A dry-run plan awaiting human approval."""

    summary: str
    subtasks: list[OrchestratorPlanStep] = Field(default_factory=list)
    reasoning: str = ""


class TaskOutput(BaseModel):
    """Task.output bag."""

    model_config = ConfigDict(extra="allow")

    plan: OrchestratorPlan | None = None
    content: str | None = None
    summary: str | None = None

    @field_validator("content", "summary", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str | None:
        # Agents sometimes attach structured content
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, default=str)


def merge_payload(existing: dict[str, Any] | None, partial: dict[str, Any] | None) -> dict[str, Any]:
    """Shallow-merge ``partial`` into ``existing``.

    New keys win; keys absent from ``partial`` are preserved. Neither argument
    is mutated.
    """
    merged = dict(existing or {})
    merged.update(partial or {})
    return merged


def read_input(raw: dict[str, Any] | None) -> TaskInput:
    return TaskInput.model_validate(raw or {})


def read_output(raw: dict[str, Any] | None) -> TaskOutput:
    return TaskOutput.model_validate(raw or {})


def dump_section(model: BaseModel) -> dict[str, Any]:
    """Serialize a section for storage in a JSON column."""
    return model.model_dump(mode="json", exclude_none=True)
