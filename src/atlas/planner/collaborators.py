"""Interfaces of the services the planner consumes, plus default implementations."""

from typing import Any, Protocol, runtime_checkable

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from atlas.core.models import AutonomyLevel, ConfidenceResult, HistoricalPattern, PlanStep, TrustScore
from atlas.database.models import Agent, PlanPattern, utcnow

logger = structlog.get_logger(__name__)


@runtime_checkable
class TrustScoreService(Protocol):
    """Per-agent reliability metric."""

    async def get_trust_score(self, agent_id: str, account_id: str) -> TrustScore: ...


@runtime_checkable
class ConfidenceEvaluator(Protocol):
    """Decides the execution mode for a plan.

    ``payload`` has the shape
    ``{"steps": [{"agentId", "toolsRequired", "dependsOnIndex"?}], "patternKey",
    "estimatedCostCents"}``.
    """

    async def evaluate(
        self,
        payload: dict[str, Any],
        account_id: str,
        overrides: dict[str, AutonomyLevel],
    ) -> ConfidenceResult: ...


@runtime_checkable
class ChatClient(Protocol):
    """System prompt + user message in, free text out."""

    async def complete(self, system: str, user: str) -> str: ...


@runtime_checkable
class PatternStore(Protocol):
    """Historical plan pattern statistics."""

    def top_patterns(
        self, account_id: str, limit: int = 5, min_executions: int = 2
    ) -> list[HistoricalPattern]: ...


@runtime_checkable
class ToolResolver(Protocol):
    def tools_for(self, agent: Agent) -> list[str]: ...


# Collaboration tools available to every role
COLLAB_TOOLS = ["send_message", "read_messages"]

DEFAULT_AGENT_TOOLS: dict[str, list[str]] = {
    "content-writer": [
        "web_search",
        "fetch_url",
        "fetch_google_doc",
        "publish_blog_post",
        "generate_image",
        "create_landing_page",
        "create_skill",
        *COLLAB_TOOLS,
    ],
    "image-generator": ["generate_image", *COLLAB_TOOLS],
    "researcher": [
        "web_search",
        "fetch_url",
        "fetch_google_doc",
        "dns_lookup",
        "check_domain_availability",
        "create_skill",
        *COLLAB_TOOLS,
    ],
    "qa-tester": ["web_search", "fetch_url", "fetch_google_doc", *COLLAB_TOOLS],
    "orchestrator": [
        "create_task",
        "list_tasks",
        "get_task_result",
        "assign_task",
        "update_task_status",
        "preview_plan",
        "cancel_tree",
        "estimate_cost",
        *COLLAB_TOOLS,
    ],
    "forge": ["web_search", "fetch_url", "fetch_google_doc", "create_skill", *COLLAB_TOOLS],
}


class DefaultToolResolver:
    """Explicit agent tool bindings win, otherwise the role's default set."""

    def __init__(self, defaults: dict[str, list[str]] | None = None) -> None:
        self.defaults = defaults if defaults is not None else DEFAULT_AGENT_TOOLS

    def tools_for(self, agent: Agent) -> list[str]:
        if agent.tools:
            return list(agent.tools)
        return list(self.defaults.get(agent.agent_type, []))


class SqlPatternStore:
    """PatternStore over the plan_patterns table."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def top_patterns(
        self, account_id: str, limit: int = 5, min_executions: int = 2
    ) -> list[HistoricalPattern]:
        query = (
            select(PlanPattern)
            .where(
                PlanPattern.account_id == account_id,
                PlanPattern.total_executions >= min_executions,
            )
            .order_by(PlanPattern.success_rate.desc(), PlanPattern.total_executions.desc())
            .limit(limit)
        )
        return [
            HistoricalPattern(
                pattern_key=row.pattern_key,
                agent_types=row.agent_types or [],
                tools_used=row.tools_used or [],
                step_count=row.step_count,
                success_rate=row.success_rate or 0.0,
                total_executions=row.total_executions,
            )
            for row in self.session.scalars(query)
        ]

    def get(self, account_id: str, pattern_key: str) -> PlanPattern | None:
        query = select(PlanPattern).where(
            PlanPattern.account_id == account_id, PlanPattern.pattern_key == pattern_key
        )
        return self.session.scalars(query).first()

    def record_execution(
        self, account_id: str, pattern_key: str, steps: list[PlanStep], success: bool
    ) -> PlanPattern:
        """Count one finished execution of a plan shape and recompute its success rate."""
        pattern = self.get(account_id, pattern_key)
        if pattern is None:
            pattern = PlanPattern(
                account_id=account_id,
                pattern_key=pattern_key,
                agent_types=sorted({s.agent_type for s in steps}),
                tools_used=sorted({t for s in steps for t in s.tools_required}),
                step_count=len(steps),
                total_executions=0,
                successful_executions=0,
            )
            self.session.add(pattern)

        pattern.total_executions += 1
        if success:
            pattern.successful_executions += 1
        pattern.success_rate = pattern.successful_executions / pattern.total_executions
        pattern.last_executed_at = utcnow()
        pattern.last_success = success
        self.session.flush()

        logger.info(
            "plan_pattern_recorded",
            pattern_key=pattern_key,
            total_executions=pattern.total_executions,
            success_rate=pattern.success_rate,
        )
        return pattern
