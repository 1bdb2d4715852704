"""Core data models for Atlas."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(str, Enum):
    """Shared task lifecycle.

    draft -> pending -> queued -> in_progress -> review -> completed.
    failed and cancelled are reachable from any non-terminal state.
    """

    DRAFT = "draft"
    PENDING = "pending"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

# Statuses an orchestrating agent may set through update_task_status
ORCHESTRATOR_STATUSES = (
    TaskStatus.QUEUED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.REVIEW,
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
)


class TaskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActorType(str, Enum):
    """Who performed a change or owns an assignment."""

    AGENT = "agent"
    USER = "user"
    SYSTEM = "system"


class ExecutionMode(str, Enum):
    """Confidence/autonomy verdict for a plan."""

    AUTO = "auto"
    PLAN_THEN_EXECUTE = "plan-then-execute"
    STEP_BY_STEP = "step-by-step"


class AutonomyLevel(str, Enum):
    """Per-agent autonomy override."""

    SUPERVISED = "supervised"
    SEMI_AUTONOMOUS = "semi-autonomous"
    AUTONOMOUS = "autonomous"


class DependencyType(str, Enum):
    """Dependency edge kinds.

    Only finish-to-start gating is honoured by the scheduler; the other kinds
    are recorded for graph rendering.
    """

    FINISH_TO_START = "FS"
    START_TO_START = "SS"
    FINISH_TO_FINISH = "FF"
    START_TO_FINISH = "SF"


class TrustScore(BaseModel):
    """Trust score returned by the trust score service."""

    model_config = ConfigDict(extra="allow")

    agent_id: str
    overall_score: float = Field(..., ge=0.0, le=1.0)
    recent_success_rate: float = Field(0.0, ge=0.0, le=1.0)
    health_status: str = "healthy"
    total_executions: int = 0


class ConfidenceResult(BaseModel):
    """Verdict returned by the confidence evaluator."""

    model_config = ConfigDict(extra="allow")

    overall_score: float
    execution_mode: ExecutionMode
    level: str | None = None
    reasoning: str = ""
    factors: dict[str, float] = Field(default_factory=dict)


class PlanStep(BaseModel):
    """One agent-assignable step of an execution plan."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    agent_id: str = Field("", alias="agentId")
    agent_alias: str = Field("", alias="agentAlias")
    agent_type: str = Field("", alias="agentType")
    tools_required: list[str] = Field(default_factory=list, alias="toolsRequired")
    depends_on_index: int | None = Field(None, alias="dependsOnIndex")

    @field_validator("tools_required", mode="before")
    @classmethod
    def coerce_tools(cls, v: Any) -> list[str]:
        if v is None:
            return []
        return v


class ExecutionPlan(BaseModel):
    """A generated plan plus its confidence verdict."""

    steps: list[PlanStep]
    confidence: ConfidenceResult
    execution_mode: ExecutionMode
    pattern_key: str
    reasoning: str = ""


class HistoricalPattern(BaseModel):
    """A row from the historical plan pattern store."""

    pattern_key: str = ""
    agent_types: list[str] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    step_count: int = 1
    success_rate: float = 0.0
    total_executions: int = 0


class TaskEvent(BaseModel):
    """Event published on an EventChannel."""

    event_type: str
    task_id: str
    account_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
