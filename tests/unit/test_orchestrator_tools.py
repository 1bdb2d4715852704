"""Unit tests for the orchestrator tool surface."""

from datetime import timedelta

import pytest
from pydantic import BaseModel

from atlas.core.events import EventChannel
from atlas.core.models import ActorType, TaskEvent, TaskStatus
from atlas.database.models import Task, utcnow
from atlas.database.repository import TaskRepository
from atlas.tools.base import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from atlas.tools.orchestrator import build_orchestrator_registry
from tests.fakes import ACCOUNT_ID, OTHER_ACCOUNT_ID

# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def events() -> list[TaskEvent]:
    return []


@pytest.fixture
def registry(db_session, test_settings, events) -> ToolRegistry:
    channel = EventChannel()
    channel.subscribe(events.append)
    return build_orchestrator_registry(db_session, settings=test_settings, events=channel)


@pytest.fixture
def tasks(db_session) -> TaskRepository:
    return TaskRepository(db_session)


@pytest.fixture
def parent(task_factory, roster, db_session):
    """Orchestrator-owned parent task; setup is committed so tool rollbacks keep it."""
    task = task_factory(
        "Launch campaign",
        assigned_to=roster["Conductor"].id,
        assigned_to_type=ActorType.AGENT,
        status=TaskStatus.IN_PROGRESS,
    )
    db_session.commit()
    return task


@pytest.fixture
def ctx(parent, roster) -> ToolContext:
    return ToolContext(
        account_id=ACCOUNT_ID, context_task_id=parent.id, agent_id=roster["Conductor"].id
    )


def _children(tasks: TaskRepository, parent_id: str):
    return tasks.list_children(parent_id, ACCOUNT_ID, limit=100)


# ============================================================================
# Registry
# ============================================================================


class TestRegistry:
    def test_all_tools_registered_with_schemas(self, registry: ToolRegistry) -> None:
        assert registry.names == [
            "create_task",
            "list_tasks",
            "get_task_result",
            "assign_task",
            "update_task_status",
            "preview_plan",
            "cancel_tree",
            "estimate_cost",
        ]
        create = next(s for s in registry.schemas() if s["name"] == "create_task")
        assert set(create["parameters"]["required"]) == {"title", "assign_to_agent_type"}

    def test_unknown_tool(self, registry: ToolRegistry, ctx: ToolContext) -> None:
        result = registry.invoke("delete_everything", {}, ctx)

        assert not result.success
        assert result.error == "Unknown tool: delete_everything"

    def test_invalid_parameters(self, registry: ToolRegistry, ctx: ToolContext) -> None:
        result = registry.invoke("create_task", {"assign_to_agent_type": "researcher"}, ctx)

        assert not result.success
        assert result.error.startswith("Invalid parameters for create_task: title:")

    def test_handler_exception_rolls_back(self, db_session, tasks, ctx: ToolContext) -> None:
        class NoParams(BaseModel):
            pass

        def explode(params, context) -> ToolResult:
            tasks.create(
                context.account_id, "half-done", changed_by="x", changed_by_type=ActorType.SYSTEM
            )
            raise RuntimeError("boom")

        registry = ToolRegistry(db_session)
        registry.register(ToolDefinition("explode", "Always fails", NoParams, explode))

        result = registry.invoke("explode", None, ctx)

        assert not result.success
        assert result.error == "Failed to explode: boom"
        assert db_session.query(Task).filter_by(title="half-done").count() == 0

    def test_commit_failure_returned_as_error(
        self, registry, db_session, ctx: ToolContext, tasks, monkeypatch
    ) -> None:
        def locked() -> None:
            raise RuntimeError("database is locked")

        monkeypatch.setattr(db_session, "commit", locked)

        result = registry.invoke(
            "create_task", {"title": "Draft", "assign_to_agent_type": "content-writer"}, ctx
        )

        assert not result.success
        assert result.error == "Failed to create task: database is locked"
        assert _children(tasks, ctx.context_task_id) == []


# ============================================================================
# create_task
# ============================================================================


class TestCreateTask:
    def test_creates_queued_subtask_for_role(
        self, registry, ctx, tasks, parent, roster, events
    ) -> None:
        result = registry.invoke(
            "create_task",
            {"title": "Find sources", "description": "Solar", "assign_to_agent_type": "researcher"},
            ctx,
        )

        assert result.success, result.error
        assert result.data["assignedTo"] == roster["Scout"].id
        assert result.formatted.startswith('Subtask created: "Find sources"')

        subtask = tasks.get(result.data["taskId"])
        assert subtask.status == "queued"
        assert subtask.parent_task_id == parent.id
        assert subtask.source_task_id == parent.id
        assert subtask.auto_generated is True
        assert subtask.created_by == roster["Conductor"].id
        assert subtask.created_by_type == "agent"
        assert subtask.status_history[0].note == "Created by orchestrator"
        assert [e.event_type for e in events] == ["task_created"]

    def test_explicit_agent_and_dependencies(
        self, registry, ctx, tasks, roster, task_factory, db_session
    ) -> None:
        first = task_factory("First", parent_task_id=ctx.context_task_id)
        db_session.commit()

        result = registry.invoke(
            "create_task",
            {
                "title": "Second",
                "assign_to_agent_type": "researcher",
                "assign_to_agent_id": roster["Pixel"].id,
                "depends_on_task_ids": [first.id, first.id],
            },
            ctx,
        )

        assert result.success, result.error
        subtask = tasks.get(result.data["taskId"])
        assert subtask.assigned_to == roster["Pixel"].id
        assert subtask.depends_on == [first.id]

    def test_skill_attached_when_found_and_ignored_otherwise(
        self, registry, ctx, tasks, skill_factory, db_session
    ) -> None:
        skill = skill_factory("seo-audit")
        db_session.commit()

        found = registry.invoke(
            "create_task",
            {"title": "Audit", "assign_to_agent_type": "researcher", "skill_slug": "seo-audit"},
            ctx,
        )
        missing = registry.invoke(
            "create_task",
            {"title": "Audit 2", "assign_to_agent_type": "researcher", "skill_slug": "nope"},
            ctx,
        )

        assert tasks.get(found.data["taskId"]).skill_id == skill.id
        assert missing.success
        assert tasks.get(missing.data["taskId"]).skill_id is None

    def test_unknown_role_lists_available_types(self, registry, ctx) -> None:
        result = registry.invoke(
            "create_task", {"title": "Translate", "assign_to_agent_type": "translator"}, ctx
        )

        assert not result.success
        assert result.error == (
            'No active agent of type "translator" found. Available agent types: '
            "content-writer, forge, image-generator, orchestrator, researcher."
        )

    def test_inactive_explicit_agent_rejected(self, registry, ctx, agent_factory, db_session) -> None:
        retired = agent_factory("Retired", "researcher", is_active=False)
        db_session.commit()

        result = registry.invoke(
            "create_task",
            {"title": "x", "assign_to_agent_type": "researcher", "assign_to_agent_id": retired.id},
            ctx,
        )

        assert not result.success
        assert "not found or not available" in result.error

    def test_unknown_dependency_rejected(self, registry, ctx, tasks) -> None:
        result = registry.invoke(
            "create_task",
            {"title": "x", "assign_to_agent_type": "researcher", "depends_on_task_ids": ["ghost"]},
            ctx,
        )

        assert result.error == "Unknown dependency task ids: ghost"
        assert _children(tasks, ctx.context_task_id) == []

    def test_limit_enforced_without_creating_rows(
        self, registry, ctx, tasks, task_factory, orchestrator_config, db_session
    ) -> None:
        orchestrator_config(max_subtasks_per_parent=2)
        task_factory("one", parent_task_id=ctx.context_task_id)
        task_factory("two", parent_task_id=ctx.context_task_id)
        task_factory("gone", parent_task_id=ctx.context_task_id, status=TaskStatus.CANCELLED)
        db_session.commit()

        result = registry.invoke(
            "create_task", {"title": "three", "assign_to_agent_type": "researcher"}, ctx
        )

        assert not result.success
        assert result.error == (
            "Cannot create subtask: reached maximum of 2 subtasks per parent. "
            "Cancel existing subtasks or increase the limit."
        )
        assert sorted(t.title for t in _children(tasks, ctx.context_task_id)) == [
            "gone",
            "one",
            "two",
        ]

    def test_limit_defaults_to_settings(
        self, db_session, test_settings, ctx, tasks, task_factory
    ) -> None:
        settings = test_settings.model_copy(update={"default_max_subtasks_per_parent": 1})
        registry = build_orchestrator_registry(db_session, settings=settings)
        task_factory("one", parent_task_id=ctx.context_task_id)
        db_session.commit()

        result = registry.invoke(
            "create_task", {"title": "two", "assign_to_agent_type": "researcher"}, ctx
        )

        assert "maximum of 1 subtasks" in result.error

    def test_requires_calling_task(self, registry, roster) -> None:
        ctx = ToolContext(account_id=ACCOUNT_ID, agent_id=roster["Conductor"].id)

        result = registry.invoke(
            "create_task", {"title": "x", "assign_to_agent_type": "researcher"}, ctx
        )

        assert not result.success


# ============================================================================
# list_tasks / get_task_result
# ============================================================================


class TestListTasks:
    def test_lists_children_oldest_first(
        self, registry, ctx, task_factory, db_session, roster
    ) -> None:
        now = utcnow()
        late = task_factory("late", parent_task_id=ctx.context_task_id)
        early = task_factory(
            "early",
            parent_task_id=ctx.context_task_id,
            assigned_to=roster["Quill"].id,
            status=TaskStatus.PENDING,
        )
        late.created_at = now
        early.created_at = now - timedelta(minutes=1)
        db_session.commit()

        result = registry.invoke("list_tasks", {}, ctx)

        assert result.data["count"] == 2
        assert [t["title"] for t in result.data["tasks"]] == ["early", "late"]
        first_line = result.formatted.splitlines()[0]
        assert first_line.startswith('1. [PENDING] "early"')
        assert f"assigned: {roster['Quill'].id}" in first_line

    def test_filters(self, registry, ctx, task_factory, db_session) -> None:
        task_factory("queued one", parent_task_id=ctx.context_task_id)
        task_factory("done", parent_task_id=ctx.context_task_id, status=TaskStatus.COMPLETED)
        db_session.commit()

        result = registry.invoke("list_tasks", {"status": "completed"}, ctx)

        assert [t["title"] for t in result.data["tasks"]] == ["done"]

    def test_empty(self, registry, ctx) -> None:
        result = registry.invoke("list_tasks", {"status": "failed"}, ctx)

        assert result.success
        assert result.formatted == "No tasks found matching criteria."

    def test_limit_validated(self, registry, ctx) -> None:
        assert not registry.invoke("list_tasks", {"limit": 0}, ctx).success


class TestGetTaskResult:
    def test_completed_shows_content(self, registry, ctx, task_factory, db_session) -> None:
        task = task_factory("Essay", status=TaskStatus.COMPLETED)
        task.output = {"content": "The essay text", "words": 3}
        db_session.commit()

        result = registry.invoke("get_task_result", {"task_id": task.id}, ctx)

        assert result.formatted == 'Task "Essay" — Status: completed\nResult:\nThe essay text'
        assert result.data["output"]["words"] == 3

    def test_completed_falls_back_to_summary(self, registry, ctx, task_factory, db_session):
        task = task_factory("Report", status=TaskStatus.COMPLETED)
        task.output = {"summary": {"findings": 2}, "plan": {"summary": "s", "reasoning": "r"}}
        db_session.commit()

        result = registry.invoke("get_task_result", {"task_id": task.id}, ctx)

        assert result.formatted.endswith('Result:\n{"findings": 2}')

    def test_failed_shows_error(self, registry, ctx, task_factory, db_session) -> None:
        task = task_factory("Broken", status=TaskStatus.FAILED)
        task.error = {"message": "rate limited"}
        db_session.commit()

        result = registry.invoke("get_task_result", {"task_id": task.id}, ctx)

        assert result.formatted.endswith("Error: rate limited")

    def test_in_progress(self, registry, ctx, task_factory, db_session) -> None:
        task = task_factory("Busy", status=TaskStatus.IN_PROGRESS)
        db_session.commit()

        result = registry.invoke("get_task_result", {"task_id": task.id}, ctx)

        assert result.formatted.endswith("Task is still in_progress. No output yet.")

    def test_other_account_not_visible(self, registry, ctx, task_factory, db_session) -> None:
        task = task_factory("Foreign", account_id=OTHER_ACCOUNT_ID)
        db_session.commit()

        result = registry.invoke("get_task_result", {"task_id": task.id}, ctx)

        assert result.error == f"Task {task.id} not found"


# ============================================================================
# assign_task / update_task_status
# ============================================================================


class TestAssignTask:
    def test_reassigns_and_requeues(self, registry, ctx, tasks, task_factory, roster, db_session):
        task = task_factory("Stuck", status=TaskStatus.IN_PROGRESS, assigned_to=roster["Scout"].id)
        db_session.commit()

        result = registry.invoke(
            "assign_task", {"task_id": task.id, "agent_id": roster["Quill"].id}, ctx
        )

        assert result.success
        reloaded = tasks.get(task.id)
        assert reloaded.assigned_to == roster["Quill"].id
        assert reloaded.status == "queued"
        assert reloaded.status_history[-1].changed_by == roster["Conductor"].id

    def test_inactive_agent_rejected(self, registry, ctx, task_factory, agent_factory, db_session):
        task = task_factory("Stuck")
        retired = agent_factory("Retired", "researcher", is_active=False)
        db_session.commit()

        result = registry.invoke("assign_task", {"task_id": task.id, "agent_id": retired.id}, ctx)

        assert result.error == 'Agent "Retired" is not active'

    @pytest.mark.parametrize(
        "status", [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED]
    )
    def test_terminal_task_not_reopened(
        self, registry, ctx, tasks, task_factory, roster, db_session, status
    ):
        task = task_factory("Done", status=status, assigned_to=roster["Scout"].id)
        db_session.commit()

        result = registry.invoke(
            "assign_task", {"task_id": task.id, "agent_id": roster["Quill"].id}, ctx
        )

        assert result.error == (
            f'Task {task.id} is already "{status.value}" and cannot be reassigned'
        )
        reloaded = tasks.get(task.id)
        assert reloaded.status == status.value
        assert reloaded.assigned_to == roster["Scout"].id

    def test_unknown_agent_and_task(self, registry, ctx, roster) -> None:
        assert registry.invoke(
            "assign_task", {"task_id": "t", "agent_id": "ghost"}, ctx
        ).error == "Agent ghost not found"
        assert registry.invoke(
            "assign_task", {"task_id": "ghost", "agent_id": roster["Quill"].id}, ctx
        ).error == "Task ghost not found"


class TestUpdateTaskStatus:
    def test_completes_and_merges_output(self, registry, ctx, tasks, task_factory, db_session):
        task = task_factory("Write", status=TaskStatus.IN_PROGRESS)
        task.output = {"draft": "v1"}
        db_session.commit()

        result = registry.invoke(
            "update_task_status",
            {"task_id": task.id, "status": "completed", "output": {"content": "final"}},
            ctx,
        )

        assert result.formatted == f'Task {task.id} status updated to "completed". Output attached.'
        reloaded = tasks.get(task.id)
        assert reloaded.status == "completed"
        assert reloaded.completed_at is not None
        assert reloaded.output == {"draft": "v1", "content": "final"}
        assert [h.status for h in reloaded.status_history] == ["in_progress", "completed"]

    def test_rejects_status_outside_orchestrator_set(self, registry, ctx, task_factory, db_session):
        task = task_factory("Write")
        db_session.commit()

        result = registry.invoke(
            "update_task_status", {"task_id": task.id, "status": "draft"}, ctx
        )

        assert result.error == (
            'Invalid status "draft". Valid: queued, in_progress, review, completed, failed, cancelled'
        )

    def test_terminal_task_cannot_be_reopened(self, registry, ctx, tasks, task_factory, db_session):
        task = task_factory("Done", status=TaskStatus.COMPLETED)
        db_session.commit()

        result = registry.invoke(
            "update_task_status", {"task_id": task.id, "status": "queued"}, ctx
        )

        assert not result.success
        assert tasks.get(task.id).status == "completed"


# ============================================================================
# preview_plan / cancel_tree / estimate_cost
# ============================================================================


class TestPreviewPlan:
    def test_stores_plan_and_moves_to_review(self, registry, ctx, tasks, parent) -> None:
        result = registry.invoke(
            "preview_plan",
            {
                "summary": "Two-part launch",
                "subtasks": [
                    {"title": "Research", "assign_to_agent_type": "researcher",
                     "depends_on_steps": [0]},
                    {"title": "Write", "assign_to_agent_type": "content-writer",
                     "depends_on_steps": [0, 3]},
                ],
                "reasoning": "Research first",
            },
            ctx,
        )

        assert result.success, result.error
        assert result.formatted.startswith("Plan submitted for human approval.")
        assert "  2. [content-writer] Write (after step 1)" in result.formatted

        reloaded = tasks.get(parent.id)
        assert reloaded.status == "review"
        assert reloaded.status_history[-1].note == "Orchestrator plan awaiting approval"
        plan = reloaded.output["plan"]
        assert plan["summary"] == "Two-part launch"
        assert [s["depends_on_steps"] for s in plan["subtasks"]] == [[], [0]]
        assert _children(tasks, parent.id) == []

    def test_requires_subtasks(self, registry, ctx) -> None:
        result = registry.invoke(
            "preview_plan", {"summary": "Nothing", "subtasks": [], "reasoning": "none"}, ctx
        )

        assert not result.success


class TestCancelTree:
    def test_cancels_subtree(self, registry, ctx, tasks, task_factory, parent, db_session, events):
        child = task_factory("child", parent_task_id=parent.id)
        task_factory("grandchild", parent_task_id=child.id, status=TaskStatus.PENDING)
        task_factory("finished", parent_task_id=parent.id, status=TaskStatus.COMPLETED)
        db_session.commit()

        result = registry.invoke("cancel_tree", {"task_id": parent.id}, ctx)

        assert result.data["cancelledCount"] == 3
        assert result.formatted == (
            'Task tree cancelled. 3 task(s) set to "cancelled" status (root: "Launch campaign").'
        )
        assert tasks.get(parent.id).status == "cancelled"
        assert events[-1].event_type == "tree_cancelled"

    def test_unknown_root(self, registry, ctx) -> None:
        assert registry.invoke("cancel_tree", {"task_id": "ghost"}, ctx).error == (
            "Task ghost not found"
        )


def test_estimate_cost_tool(registry, ctx) -> None:
    result = registry.invoke(
        "estimate_cost",
        {"steps": [{"agent_type": "researcher"}, {"agent_type": "forge", "model": "haiku"}]},
        ctx,
    )

    assert result.data["totalTokens"] == 8000
    assert result.data["totalCostCents"] == pytest.approx(4.5 + 0.5)
    assert [s["model"] for s in result.data["steps"]] == ["sonnet", "haiku"]
