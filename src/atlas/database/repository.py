"""Repositories over a SQLAlchemy session.

Repositories flush but never commit; the caller owns the unit of work
(see PlanExecutor and ToolRegistry.invoke).
"""

from collections.abc import Iterable
from typing import Any

import structlog
from sqlalchemy import DateTime, String, func, insert, literal, select, update
from sqlalchemy.orm import Session, aliased

from atlas.core.exceptions import NotFoundError
from atlas.core.models import (
    TERMINAL_STATUSES,
    ActorType,
    DependencyType,
    TaskPriority,
    TaskStatus,
)
from atlas.core.payloads import merge_payload
from atlas.database.models import (
    Agent,
    OrchestratorConfig,
    Skill,
    Task,
    TaskDependency,
    TaskStatusChange,
    utcnow,
)

logger = structlog.get_logger(__name__)

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATUSES)


def _value(enum_or_str: Any) -> Any:
    return getattr(enum_or_str, "value", enum_or_str)


class TaskRepository:
    """Task tree persistence."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, task_id: str, account_id: str | None = None) -> Task | None:
        """Get a non-deleted task, optionally scoped to an account."""
        query = select(Task).where(Task.id == task_id, Task.deleted_at.is_(None))
        if account_id is not None:
            query = query.where(Task.account_id == account_id)
        return self.session.scalars(query).first()

    def get(self, task_id: str, account_id: str | None = None) -> Task:
        """Get a task or raise NotFoundError."""
        task = self.find(task_id, account_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def create(
        self,
        account_id: str,
        title: str,
        *,
        status: TaskStatus | str = TaskStatus.QUEUED,
        changed_by: str,
        changed_by_type: ActorType | str,
        note: str | None = None,
        description: str | None = None,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        project_id: str | None = None,
        parent_task_id: str | None = None,
        source_task_id: str | None = None,
        assigned_to: str | None = None,
        assigned_to_type: ActorType | str | None = None,
        skill_id: str | None = None,
        auto_generated: bool = False,
        input: dict | None = None,
    ) -> Task:
        """Insert a task together with its status-history seed entry."""
        now = utcnow()
        task = Task(
            account_id=account_id,
            title=title,
            description=description,
            priority=_value(priority),
            status=_value(status),
            project_id=project_id,
            parent_task_id=parent_task_id,
            source_task_id=source_task_id,
            assigned_to=assigned_to,
            assigned_to_type=_value(assigned_to_type),
            skill_id=skill_id,
            auto_generated=auto_generated,
            input=input or {},
            created_at=now,
            updated_at=now,
            created_by=changed_by,
            created_by_type=_value(changed_by_type),
            updated_by=changed_by,
            updated_by_type=_value(changed_by_type),
        )
        task.status_history.append(
            TaskStatusChange(
                status=_value(status),
                changed_at=now,
                changed_by=changed_by,
                changed_by_type=_value(changed_by_type),
                note=note,
            )
        )
        self.session.add(task)
        self.session.flush()

        logger.debug("task_inserted", task_id=task.id, parent_task_id=parent_task_id)
        return task

    def count_active_children(self, parent_task_id: str) -> int:
        """Count non-cancelled, non-deleted children."""
        query = select(func.count(Task.id)).where(
            Task.parent_task_id == parent_task_id,
            Task.status != TaskStatus.CANCELLED.value,
            Task.deleted_at.is_(None),
        )
        return self.session.scalar(query) or 0

    def list_children(
        self,
        parent_task_id: str,
        account_id: str,
        status: str | None = None,
        assigned_to: str | None = None,
        limit: int = 20,
    ) -> list[Task]:
        """Children of a task, oldest first."""
        query = select(Task).where(
            Task.account_id == account_id,
            Task.parent_task_id == parent_task_id,
            Task.deleted_at.is_(None),
        )
        if status:
            query = query.where(Task.status == status)
        if assigned_to:
            query = query.where(Task.assigned_to == assigned_to)

        query = query.order_by(Task.created_at.asc(), Task.id.asc()).limit(limit)
        return list(self.session.scalars(query))

    def set_status(
        self,
        task: Task,
        status: TaskStatus | str,
        changed_by: str,
        changed_by_type: ActorType | str,
        note: str | None = None,
    ) -> Task:
        """Change status and append the matching history entry."""
        now = utcnow()
        status = _value(status)

        task.status = status
        task.updated_at = now
        task.updated_by = changed_by
        task.updated_by_type = _value(changed_by_type)
        if status == TaskStatus.COMPLETED.value:
            task.completed_at = now

        task.status_history.append(
            TaskStatusChange(
                status=status,
                changed_at=now,
                changed_by=changed_by,
                changed_by_type=_value(changed_by_type),
                note=note,
            )
        )
        self.session.flush()
        return task

    def assign(
        self,
        task: Task,
        agent_id: str,
        changed_by: str,
        changed_by_type: ActorType | str = ActorType.AGENT,
    ) -> Task:
        """Reassign to an agent and put the task back on the queue."""
        task.assigned_to = agent_id
        task.assigned_to_type = ActorType.AGENT.value
        return self.set_status(
            task, TaskStatus.QUEUED, changed_by, changed_by_type, note=f"Assigned to {agent_id}"
        )

    def merge_output(self, task: Task, partial: dict[str, Any] | None) -> Task:
        """Merge partial output into the existing output bag."""
        if partial:
            task.output = merge_payload(task.output, partial)
            self.session.flush()
        return task

    def add_dependency(
        self,
        task_id: str,
        depends_on_task_id: str,
        account_id: str,
        dependency_type: DependencyType = DependencyType.FINISH_TO_START,
        created_by: str | None = None,
    ) -> TaskDependency:
        """Create a dependency edge."""
        edge = TaskDependency(
            account_id=account_id,
            task_id=task_id,
            depends_on_task_id=depends_on_task_id,
            dependency_type=_value(dependency_type),
            created_by=created_by,
        )
        self.session.add(edge)
        self.session.flush()
        return edge

    def existing_ids(self, task_ids: Iterable[str], account_id: str) -> set[str]:
        """Subset of task_ids that exist for the account."""
        ids = list(task_ids)
        if not ids:
            return set()
        query = select(Task.id).where(
            Task.id.in_(ids), Task.account_id == account_id, Task.deleted_at.is_(None)
        )
        return set(self.session.scalars(query))

    def cancel_tree(
        self,
        root_id: str,
        cancelled_by: str | None = None,
        cancelled_by_type: ActorType | str = ActorType.SYSTEM,
        note: str = "Cancelled via cancel_tree",
    ) -> int:
        """Cancel a task and every non-terminal descendant.

        Runs as two set-based statements over one recursive CTE inside the
        session's transaction: append history rows, then transition the
        rows. Terminal nodes keep their status but are still traversed.

        Returns:
            Number of tasks transitioned to cancelled
        """
        now = utcnow()
        actor = cancelled_by or "system"
        actor_type = _value(cancelled_by_type)

        tree = (
            select(Task.id)
            .where(Task.id == root_id, Task.deleted_at.is_(None))
            .cte("task_tree", recursive=True)
        )
        child = aliased(Task)
        tree = tree.union_all(
            select(child.id).where(child.parent_task_id == tree.c.id, child.deleted_at.is_(None))
        )

        targets = Task.id.in_(select(tree.c.id))
        cancellable = Task.status.notin_(_TERMINAL_VALUES)

        history_rows = select(
            Task.id,
            literal(TaskStatus.CANCELLED.value, String),
            literal(now, DateTime),
            literal(actor, String),
            literal(actor_type, String),
            literal(note, String),
        ).where(targets, cancellable)

        self.session.execute(
            insert(TaskStatusChange).from_select(
                ["task_id", "status", "changed_at", "changed_by", "changed_by_type", "note"],
                history_rows,
            )
        )
        # sqlite3 reports rowcount -1 for statements starting with WITH, so
        # count the targets while the history insert holds the write lock
        cancelled = self.session.scalar(
            select(func.count()).select_from(Task).where(targets, cancellable)
        ) or 0
        self.session.execute(
            update(Task)
            .where(targets, cancellable)
            .values(
                status=TaskStatus.CANCELLED.value,
                updated_at=now,
                updated_by=cancelled_by,
                updated_by_type=actor_type,
            )
            .execution_options(synchronize_session=False)
        )
        # Loaded Task instances are stale after the bulk statements
        self.session.expire_all()
        logger.info("task_tree_cancelled", root_id=root_id, cancelled=cancelled)
        return cancelled

    def compare_and_set_input(
        self, task_id: str, expected_version: int, new_input: dict[str, Any]
    ) -> bool:
        """Replace the input bag only if nobody else wrote it since expected_version."""
        result = self.session.execute(
            update(Task)
            .where(Task.id == task_id, Task.input_version == expected_version)
            .values(input=new_input, input_version=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        swapped = (result.rowcount or 0) == 1
        if swapped:
            self.session.expire_all()
        return swapped

    def read_input(self, task_id: str) -> tuple[dict[str, Any], int]:
        """Fresh read of (input, input_version), bypassing the identity map."""
        row = self.session.execute(
            select(Task.input, Task.input_version).where(Task.id == task_id)
        ).first()
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return dict(row.input or {}), row.input_version or 0


class AgentRepository:
    """Agent roster lookups."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_roster(self, account_id: str) -> list[Agent]:
        """Every non-deleted agent on the account."""
        query = (
            select(Agent)
            .where(Agent.account_id == account_id, Agent.deleted_at.is_(None))
            .order_by(Agent.created_at.asc(), Agent.id.asc())
        )
        return list(self.session.scalars(query))

    def find(self, agent_id: str, account_id: str) -> Agent | None:
        query = select(Agent).where(
            Agent.id == agent_id, Agent.account_id == account_id, Agent.deleted_at.is_(None)
        )
        return self.session.scalars(query).first()

    def find_available_by_type(self, account_id: str, agent_type: str) -> Agent | None:
        """First active, unpaused agent with the given role."""
        query = (
            select(Agent)
            .where(
                Agent.account_id == account_id,
                Agent.agent_type == agent_type,
                Agent.is_active.is_(True),
                Agent.paused_at.is_(None),
                Agent.deleted_at.is_(None),
            )
            .order_by(Agent.created_at.asc(), Agent.id.asc())
            .limit(1)
        )
        return self.session.scalars(query).first()

    def available_types(self, account_id: str) -> list[str]:
        query = (
            select(Agent.agent_type)
            .where(
                Agent.account_id == account_id,
                Agent.is_active.is_(True),
                Agent.paused_at.is_(None),
                Agent.deleted_at.is_(None),
            )
            .distinct()
            .order_by(Agent.agent_type)
        )
        return list(self.session.scalars(query))


class SkillRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_enabled_by_slug(self, account_id: str, slug: str) -> Skill | None:
        query = select(Skill).where(
            Skill.account_id == account_id,
            Skill.slug == slug,
            Skill.is_enabled.is_(True),
            Skill.deleted_at.is_(None),
        )
        return self.session.scalars(query).first()


class OrchestratorConfigRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, account_id: str) -> OrchestratorConfig | None:
        query = select(OrchestratorConfig).where(OrchestratorConfig.account_id == account_id)
        return self.session.scalars(query).first()

    def max_subtasks_per_parent(self, account_id: str, default: int) -> int:
        config = self.find(account_id)
        if config is None or config.max_subtasks_per_parent is None:
            return default
        return config.max_subtasks_per_parent
