"""SQLAlchemy database models for Atlas."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Agent(Base, TimestampMixin):
    """An autonomous worker on an account's roster."""

    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), nullable=False, index=True)

    # Identity
    alias = Column(String(255), nullable=False)
    agent_type = Column(String(100), nullable=False, index=True)  # role tag
    description = Column(Text)

    # Availability
    is_active = Column(Boolean, nullable=False, default=True)
    paused_at = Column(DateTime)
    health_status = Column(String(50), nullable=False, default="healthy")
    deleted_at = Column(DateTime)

    # Configuration
    capabilities = Column(JSON, default=list)
    tools = Column(JSON, default=list)  # explicit tool bindings, empty = role defaults
    autonomy_override = Column(String(50))  # 'supervised', 'semi-autonomous', 'autonomous'

    __table_args__ = (Index("idx_agents_account_type", "account_id", "agent_type"),)

    @property
    def is_available(self) -> bool:
        """Active, unpaused and not soft-deleted."""
        return bool(self.is_active) and self.paused_at is None and self.deleted_at is None


class Task(Base, TimestampMixin):
    """A node of a task tree."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), nullable=False, index=True)
    project_id = Column(String(36))

    # Task Details
    title = Column(String(500), nullable=False)
    description = Column(Text)
    priority = Column(String(20), nullable=False, default="medium")

    # Status
    status = Column(String(50), nullable=False, default="draft", index=True)
    completed_at = Column(DateTime)
    deleted_at = Column(DateTime)

    # Hierarchy
    parent_task_id = Column(String(36), ForeignKey("tasks.id", ondelete="SET NULL"), index=True)
    source_task_id = Column(String(36))
    auto_generated = Column(Boolean, nullable=False, default=False)

    # Assignment
    assigned_to = Column(String(36), index=True)
    assigned_to_type = Column(String(20))  # 'agent' or 'user'
    skill_id = Column(String(36), ForeignKey("skills.id", ondelete="SET NULL"))

    # Payloads
    input = Column(JSON, default=dict)
    output = Column(JSON)
    error = Column(JSON)
    input_version = Column(Integer, nullable=False, default=0)

    # Audit
    created_by = Column(String(36))
    created_by_type = Column(String(20))
    updated_by = Column(String(36))
    updated_by_type = Column(String(20))

    # Relationships
    parent = relationship("Task", remote_side=[id], backref="subtasks")
    status_history = relationship(
        "TaskStatusChange",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskStatusChange.id",
    )
    dependencies = relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.task_id",
        back_populates="task",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_tasks_parent_status", "parent_task_id", "status"),)

    @property
    def depends_on(self) -> list[str]:
        """Ids of the tasks this task waits for."""
        return [d.depends_on_task_id for d in self.dependencies]


class TaskStatusChange(Base):
    """Append-only status history entry."""

    __tablename__ = "task_status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)

    status = Column(String(50), nullable=False)
    changed_at = Column(DateTime, nullable=False, default=utcnow)
    changed_by = Column(String(100), nullable=False)
    changed_by_type = Column(String(20), nullable=False)
    note = Column(Text)

    task = relationship("Task", back_populates="status_history")

    __table_args__ = (Index("idx_status_changes_task", "task_id", "id"),)


class TaskDependency(Base):
    """Dependency edge: task_id waits for depends_on_task_id."""

    __tablename__ = "task_dependencies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(36), nullable=False)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    depends_on_task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    dependency_type = Column(String(2), nullable=False, default="FS")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(String(36))

    task = relationship("Task", foreign_keys=[task_id], back_populates="dependencies")

    __table_args__ = (
        UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency"),
        Index("idx_dependencies_depends_on", "depends_on_task_id"),
    )


class Skill(Base, TimestampMixin):
    """A reusable instruction set attachable to a task."""

    __tablename__ = "skills"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), nullable=False)
    slug = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime)

    __table_args__ = (Index("idx_skills_account_slug", "account_id", "slug"),)


class PlanPattern(Base, TimestampMixin):
    """Execution statistics of a plan shape, keyed by pattern key."""

    __tablename__ = "plan_patterns"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), nullable=False, index=True)
    pattern_key = Column(Text, nullable=False)

    # Execution stats
    total_executions = Column(Integer, nullable=False, default=0)
    successful_executions = Column(Integer, nullable=False, default=0)
    success_rate = Column(Float, nullable=False, default=0.0)

    # Pattern details
    agent_types = Column(JSON, default=list)
    tools_used = Column(JSON, default=list)
    step_count = Column(Integer, nullable=False, default=1)

    # Last execution
    last_executed_at = Column(DateTime)
    last_success = Column(Boolean)

    __table_args__ = (
        UniqueConstraint("account_id", "pattern_key", name="uq_plan_pattern"),
        Index("idx_plan_patterns_success", "account_id", "success_rate"),
    )


class OrchestratorConfig(Base, TimestampMixin):
    """Per-account orchestrator hard limits."""

    __tablename__ = "orchestrator_config"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), nullable=False, unique=True)
    orchestrator_agent_id = Column(String(36))

    # Hard limits
    max_subtasks_per_parent = Column(Integer, nullable=False, default=10)
    max_total_active_tasks = Column(Integer, nullable=False, default=25)
    max_cost_per_task_cents = Column(Integer, nullable=False, default=500)

    # Behavior
    dry_run_default = Column(Boolean, nullable=False, default=True)
