"""Orchestrator tools.

The bounded command set an orchestrating agent uses on its own subtask tree:
create_task, list_tasks, get_task_result, assign_task, update_task_status,
preview_plan, cancel_tree, estimate_cost.

Expected failures come back as ``ToolResult(success=False)``; nothing is
raised across the tool boundary.
"""

import json
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from atlas.config import Settings, get_settings
from atlas.core.events import EventChannel
from atlas.core.models import ORCHESTRATOR_STATUSES, ActorType, TaskPriority, TaskStatus
from atlas.core.payloads import (
    OrchestratorPlan,
    OrchestratorPlanStep,
    dump_section,
    read_output,
)
from atlas.database.models import Task
from atlas.database.repository import (
    AgentRepository,
    OrchestratorConfigRepository,
    SkillRepository,
    TaskRepository,
)
from atlas.tools.base import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from atlas.tools.cost import estimate_plan_cost

logger = structlog.get_logger(__name__)


# ============================================================================
# Parameter models
# ============================================================================


class CreateTaskParams(BaseModel):
    title: str = Field(..., min_length=1, description="Subtask title")
    description: str | None = Field(None, description="What the subtask should accomplish")
    priority: TaskPriority = Field(TaskPriority.MEDIUM, description="Subtask priority")
    assign_to_agent_type: str = Field(..., min_length=1, description="Role of the agent to assign")
    assign_to_agent_id: str | None = Field(None, description="Specific agent id (overrides role lookup)")
    depends_on_task_ids: list[str] = Field(
        default_factory=list, description="Tasks that must complete first"
    )
    skill_slug: str | None = Field(None, description="Skill to attach, if it exists")


class ListTasksParams(BaseModel):
    parent_task_id: str | None = Field(None, description="Parent task (defaults to the current task)")
    status: str | None = Field(None, description="Only tasks in this status")
    assigned_to: str | None = Field(None, description="Only tasks assigned to this agent id")
    limit: int = Field(20, ge=1, le=100, description="Maximum number of tasks to return")


class GetTaskResultParams(BaseModel):
    task_id: str = Field(..., description="Task to inspect")


class AssignTaskParams(BaseModel):
    task_id: str = Field(..., description="Task to reassign")
    agent_id: str = Field(..., description="Agent to assign it to")


class UpdateTaskStatusParams(BaseModel):
    task_id: str = Field(..., description="Task to update")
    status: str = Field(..., description="One of: " + ", ".join(s.value for s in ORCHESTRATOR_STATUSES))
    output: dict[str, Any] | None = Field(None, description="Partial output merged into existing output")


class PreviewSubtask(BaseModel):
    title: str = Field(..., min_length=1)
    description: str | None = None
    assign_to_agent_type: str = Field(..., min_length=1)
    priority: TaskPriority = TaskPriority.MEDIUM
    depends_on_steps: list[int] | None = Field(None, description="0-based indices of earlier steps")
    skill_slug: str | None = None


class PreviewPlanParams(BaseModel):
    summary: str = Field(..., min_length=1, description="One-paragraph plan summary")
    subtasks: list[PreviewSubtask] = Field(..., min_length=1, description="Proposed subtasks in order")
    reasoning: str = Field(..., description="Why this decomposition")


class CancelTreeParams(BaseModel):
    task_id: str = Field(..., description="Root of the subtree to cancel")


class EstimateCostStepParams(BaseModel):
    agent_type: str = Field(..., min_length=1)
    estimated_tokens: int | None = Field(None, gt=0)
    model: str | None = None


class EstimateCostParams(BaseModel):
    steps: list[EstimateCostStepParams] = Field(..., min_length=1)


# ============================================================================
# Tool implementations
# ============================================================================


class OrchestratorTools:
    """Tool handlers bound to one session."""

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        events: EventChannel | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.events = events
        self.tasks = TaskRepository(session)
        self.agents = AgentRepository(session)
        self.skills = SkillRepository(session)
        self.configs = OrchestratorConfigRepository(session)

    # ------------------------------------------------------------------
    # create_task
    # ------------------------------------------------------------------

    def create_task(self, params: CreateTaskParams, ctx: ToolContext) -> ToolResult:
        if not ctx.context_task_id:
            return ToolResult.fail("Cannot create subtask: no calling task in context")

        parent = self.tasks.find(ctx.context_task_id, ctx.account_id)
        if parent is None:
            return ToolResult.fail(f"Parent task {ctx.context_task_id} not found")

        max_subtasks = self.configs.max_subtasks_per_parent(
            ctx.account_id, self.settings.default_max_subtasks_per_parent
        )
        child_count = self.tasks.count_active_children(parent.id)
        if child_count >= max_subtasks:
            logger.warning(
                "subtask_limit_reached",
                parent_task_id=parent.id,
                child_count=child_count,
                max_subtasks=max_subtasks,
            )
            return ToolResult.fail(
                f"Cannot create subtask: reached maximum of {max_subtasks} subtasks per parent. "
                "Cancel existing subtasks or increase the limit."
            )

        # Resolve agent: by id or by role
        if params.assign_to_agent_id:
            agent = self.agents.find(params.assign_to_agent_id, ctx.account_id)
            if agent is None or not agent.is_available:
                return ToolResult.fail(
                    f"Agent {params.assign_to_agent_id} not found or not available"
                )
        else:
            agent = self.agents.find_available_by_type(ctx.account_id, params.assign_to_agent_type)
            if agent is None:
                available = ", ".join(self.agents.available_types(ctx.account_id)) or "none"
                return ToolResult.fail(
                    f'No active agent of type "{params.assign_to_agent_type}" found. '
                    f"Available agent types: {available}."
                )

        # Skill is optional: an unknown slug is ignored
        skill_id = None
        if params.skill_slug:
            skill = self.skills.find_enabled_by_slug(ctx.account_id, params.skill_slug)
            if skill is None:
                logger.info("skill_not_found", skill_slug=params.skill_slug)
            else:
                skill_id = skill.id

        depends_on = list(dict.fromkeys(params.depends_on_task_ids))
        missing = set(depends_on) - self.tasks.existing_ids(depends_on, ctx.account_id)
        if missing:
            return ToolResult.fail(f"Unknown dependency task ids: {', '.join(sorted(missing))}")

        task = self.tasks.create(
            ctx.account_id,
            params.title,
            status=TaskStatus.QUEUED,
            changed_by=ctx.actor,
            changed_by_type=ActorType.AGENT,
            note="Created by orchestrator",
            description=params.description,
            priority=params.priority,
            project_id=parent.project_id,
            parent_task_id=parent.id,
            source_task_id=parent.id,
            assigned_to=agent.id,
            assigned_to_type=ActorType.AGENT,
            skill_id=skill_id,
            auto_generated=True,
        )
        for depends_on_id in depends_on:
            self.tasks.add_dependency(task.id, depends_on_id, ctx.account_id, created_by=ctx.agent_id)

        self._emit("task_created", task.id, ctx.account_id, parent_task_id=parent.id)

        return ToolResult.ok(
            f'Subtask created: "{task.title}" (ID: {task.id}) → assigned to '
            f"{agent.alias} ({agent.id}), status: queued",
            taskId=task.id,
            title=task.title,
            assignedTo=agent.id,
            assignedToAlias=agent.alias,
            skillId=skill_id,
            dependsOn=depends_on,
        )

    # ------------------------------------------------------------------
    # list_tasks
    # ------------------------------------------------------------------

    def list_tasks(self, params: ListTasksParams, ctx: ToolContext) -> ToolResult:
        parent_id = params.parent_task_id or ctx.context_task_id
        if not parent_id:
            return ToolResult.fail("No parent task given and no calling task in context")

        tasks = self.tasks.list_children(
            parent_id,
            ctx.account_id,
            status=params.status,
            assigned_to=params.assigned_to,
            limit=params.limit,
        )

        if not tasks:
            formatted = "No tasks found matching criteria."
        else:
            formatted = "\n".join(_format_task_line(i, t) for i, t in enumerate(tasks, start=1))

        return ToolResult.ok(
            formatted,
            tasks=[_task_summary(t) for t in tasks],
            count=len(tasks),
        )

    # ------------------------------------------------------------------
    # get_task_result
    # ------------------------------------------------------------------

    def get_task_result(self, params: GetTaskResultParams, ctx: ToolContext) -> ToolResult:
        task = self.tasks.find(params.task_id, ctx.account_id)
        if task is None:
            return ToolResult.fail(f"Task {params.task_id} not found")

        output = read_output(task.output)
        error = task.error or {}

        formatted = f'Task "{task.title}" — Status: {task.status}\n'
        if task.status == TaskStatus.COMPLETED.value and task.output:
            content = output.content or output.summary or _compact_json(task.output)
            formatted += f"Result:\n{content}"
        elif task.status == TaskStatus.FAILED.value and error:
            formatted += f"Error: {error.get('message') or _compact_json(error)}"
        else:
            formatted += f"Task is still {task.status}. No output yet."

        return ToolResult.ok(
            formatted,
            taskId=task.id,
            status=task.status,
            output=task.output,
            error=task.error,
        )

    # ------------------------------------------------------------------
    # assign_task
    # ------------------------------------------------------------------

    def assign_task(self, params: AssignTaskParams, ctx: ToolContext) -> ToolResult:
        agent = self.agents.find(params.agent_id, ctx.account_id)
        if agent is None:
            return ToolResult.fail(f"Agent {params.agent_id} not found")
        if not agent.is_active:
            return ToolResult.fail(f'Agent "{agent.alias}" is not active')

        task = self.tasks.find(params.task_id, ctx.account_id)
        if task is None:
            return ToolResult.fail(f"Task {params.task_id} not found")

        current = TaskStatus(task.status)
        if current.is_terminal:
            return ToolResult.fail(
                f'Task {task.id} is already "{current.value}" and cannot be reassigned'
            )

        self.tasks.assign(task, agent.id, ctx.actor, ActorType.AGENT)
        self._emit("task_assigned", task.id, ctx.account_id, agent_id=agent.id)

        return ToolResult.ok(
            f"Task {task.id} assigned to {agent.alias or agent.agent_type} ({agent.id}), "
            "status set to queued.",
            taskId=task.id,
            agentId=agent.id,
            agentAlias=agent.alias,
        )

    # ------------------------------------------------------------------
    # update_task_status
    # ------------------------------------------------------------------

    def update_task_status(self, params: UpdateTaskStatusParams, ctx: ToolContext) -> ToolResult:
        valid = [s.value for s in ORCHESTRATOR_STATUSES]
        if params.status not in valid:
            return ToolResult.fail(f'Invalid status "{params.status}". Valid: {", ".join(valid)}')

        task = self.tasks.find(params.task_id, ctx.account_id)
        if task is None:
            return ToolResult.fail(f"Task {params.task_id} not found")

        current = TaskStatus(task.status)
        if current.is_terminal and current.value != params.status:
            return ToolResult.fail(
                f'Task {task.id} is already "{current.value}" and cannot move to "{params.status}"'
            )

        self.tasks.set_status(task, params.status, ctx.actor, ActorType.AGENT)
        self.tasks.merge_output(task, params.output)
        self._emit("task_status_changed", task.id, ctx.account_id, status=params.status)

        suffix = " Output attached." if params.output else ""
        return ToolResult.ok(
            f'Task {task.id} status updated to "{params.status}".{suffix}',
            taskId=task.id,
            status=params.status,
        )

    # ------------------------------------------------------------------
    # preview_plan
    # ------------------------------------------------------------------

    def preview_plan(self, params: PreviewPlanParams, ctx: ToolContext) -> ToolResult:
        if not ctx.context_task_id:
            return ToolResult.fail("Cannot preview plan: no calling task in context")

        task = self.tasks.find(ctx.context_task_id, ctx.account_id)
        if task is None:
            return ToolResult.fail(f"Task {ctx.context_task_id} not found")

        plan = OrchestratorPlan(
            summary=params.summary,
            subtasks=[
                OrchestratorPlanStep(
                    title=s.title,
                    description=s.description or "",
                    assign_to_agent_type=s.assign_to_agent_type,
                    priority=s.priority,
                    depends_on_steps=_earlier_steps(index, s.depends_on_steps),
                    skill_slug=s.skill_slug,
                )
                for index, s in enumerate(params.subtasks)
            ],
            reasoning=params.reasoning,
        )

        # Dry run: only the plan and the review gate are written
        self.tasks.merge_output(task, {"plan": dump_section(plan)})
        self.tasks.set_status(
            task,
            TaskStatus.REVIEW,
            ctx.actor,
            ActorType.AGENT,
            note="Orchestrator plan awaiting approval",
        )
        self._emit("plan_previewed", task.id, ctx.account_id, subtasks=len(plan.subtasks))

        plan_lines = []
        for index, step in enumerate(plan.subtasks, start=1):
            deps = ""
            if step.depends_on_steps:
                deps = f" (after step {', '.join(str(d + 1) for d in step.depends_on_steps)})"
            plan_lines.append(f"  {index}. [{step.assign_to_agent_type}] {step.title}{deps}")

        formatted = "\n".join(
            [
                "Plan submitted for human approval.",
                "",
                f"Summary: {plan.summary}",
                "",
                "Subtasks:",
                *plan_lines,
                "",
                f"Reasoning: {plan.reasoning}",
                "",
                'The task is now in "review" status. '
                "Execution will proceed when the human approves the plan.",
            ]
        )

        return ToolResult.ok(
            formatted,
            plan=dump_section(plan),
            taskId=task.id,
            status=TaskStatus.REVIEW.value,
        )

    # ------------------------------------------------------------------
    # cancel_tree
    # ------------------------------------------------------------------

    def cancel_tree(self, params: CancelTreeParams, ctx: ToolContext) -> ToolResult:
        task = self.tasks.find(params.task_id, ctx.account_id)
        if task is None:
            return ToolResult.fail(f"Task {params.task_id} not found")
        title = task.title

        cancelled = self.tasks.cancel_tree(task.id, ctx.agent_id, ActorType.AGENT)
        self._emit("tree_cancelled", params.task_id, ctx.account_id, cancelled=cancelled)

        return ToolResult.ok(
            f'Task tree cancelled. {cancelled} task(s) set to "cancelled" status (root: "{title}").',
            taskId=params.task_id,
            cancelledCount=cancelled,
        )

    # ------------------------------------------------------------------
    # estimate_cost
    # ------------------------------------------------------------------

    def estimate_cost(self, params: EstimateCostParams, ctx: ToolContext) -> ToolResult:
        estimate = estimate_plan_cost(
            [(s.agent_type, s.estimated_tokens, s.model) for s in params.steps]
        )
        return ToolResult.ok(
            estimate.format(),
            totalCostCents=estimate.total_cost_cents,
            totalTokens=estimate.total_tokens,
            steps=[
                {
                    "step": s.step,
                    "agentType": s.agent_type,
                    "model": s.model,
                    "estimatedTokens": s.estimated_tokens,
                    "estimatedCostCents": s.estimated_cost_cents,
                }
                for s in estimate.steps
            ],
        )

    def _emit(self, event_type: str, task_id: str, account_id: str, **data) -> None:
        if self.events is not None:
            self.events.emit(event_type, task_id, account_id, **data)


# ============================================================================
# Helpers
# ============================================================================


def _compact_json(value: Any) -> str:
    return json.dumps(value, default=str)


def _task_summary(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "priority": task.priority,
        "assigned_to": task.assigned_to,
        "assigned_to_type": task.assigned_to_type,
        "depends_on": task.depends_on,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "created_at": task.created_at.isoformat() if task.created_at else None,
    }


def _format_task_line(index: int, task: Task) -> str:
    line = (
        f'{index}. [{task.status.upper()}] "{task.title}" (ID: {task.id}) — '
        f"priority: {task.priority}, assigned: {task.assigned_to or 'unassigned'}"
    )
    if task.depends_on:
        line += f", depends on: {', '.join(task.depends_on)}"
    return line


def _earlier_steps(index: int, depends_on_steps: list[int] | None) -> list[int] | None:
    """Keep only references to earlier steps."""
    if depends_on_steps is None:
        return None
    kept = [d for d in dict.fromkeys(depends_on_steps) if 0 <= d < index]
    if len(kept) != len(depends_on_steps):
        logger.warning(
            "preview_dependency_skipped", step=index, depends_on_steps=depends_on_steps
        )
    return kept


# ============================================================================
# Registry
# ============================================================================


TOOL_DESCRIPTIONS = {
    "create_task": "Create a subtask under your current task and assign it to an agent.",
    "list_tasks": "List subtasks of a task, optionally filtered by status or assignee.",
    "get_task_result": "Get the status and output of a task.",
    "assign_task": "Reassign a task to another agent and put it back on the queue.",
    "update_task_status": "Set a task's status, optionally merging partial output.",
    "preview_plan": "Submit a decomposition plan for human approval without creating subtasks.",
    "cancel_tree": "Cancel a task and all of its unfinished descendants.",
    "estimate_cost": "Estimate token usage and cost for a list of proposed steps.",
}


def build_orchestrator_registry(
    session: Session,
    settings: Settings | None = None,
    events: EventChannel | None = None,
) -> ToolRegistry:
    """Registry with every orchestrator tool bound to ``session``."""
    tools = OrchestratorTools(session, settings=settings, events=events)
    registry = ToolRegistry(session)

    for name, params_model, handler in (
        ("create_task", CreateTaskParams, tools.create_task),
        ("list_tasks", ListTasksParams, tools.list_tasks),
        ("get_task_result", GetTaskResultParams, tools.get_task_result),
        ("assign_task", AssignTaskParams, tools.assign_task),
        ("update_task_status", UpdateTaskStatusParams, tools.update_task_status),
        ("preview_plan", PreviewPlanParams, tools.preview_plan),
        ("cancel_tree", CancelTreeParams, tools.cancel_tree),
        ("estimate_cost", EstimateCostParams, tools.estimate_cost),
    ):
        registry.register(
            ToolDefinition(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                params_model=params_model,
                handler=handler,
            )
        )

    return registry
