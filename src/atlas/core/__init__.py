"""Core models, payloads, events and exceptions."""

from atlas.core.events import EventChannel
from atlas.core.exceptions import (
    AtlasError,
    ConcurrentUpdateError,
    NoAvailableAgentsError,
    NotFoundError,
    PlanningError,
    ValidationError,
)
from atlas.core.models import (
    ConfidenceResult,
    ExecutionMode,
    ExecutionPlan,
    PlanStep,
    TaskPriority,
    TaskStatus,
    TrustScore,
)

__all__ = [
    "AtlasError",
    "ConcurrentUpdateError",
    "ConfidenceResult",
    "EventChannel",
    "ExecutionMode",
    "ExecutionPlan",
    "NoAvailableAgentsError",
    "NotFoundError",
    "PlanStep",
    "PlanningError",
    "TaskPriority",
    "TaskStatus",
    "TrustScore",
    "ValidationError",
]
