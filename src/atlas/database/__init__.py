"""Database models and persistence."""

from atlas.database.models import (
    Agent,
    Base,
    OrchestratorConfig,
    PlanPattern,
    Skill,
    Task,
    TaskDependency,
    TaskStatusChange,
)
from atlas.database.session import get_db_session, init_db

__all__ = [
    "Base",
    "Agent",
    "Task",
    "TaskStatusChange",
    "TaskDependency",
    "Skill",
    "PlanPattern",
    "OrchestratorConfig",
    "init_db",
    "get_db_session",
]
