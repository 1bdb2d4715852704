"""Plan Generator - turns a task into an ExecutionPlan.

Strategies, in priority order:
1. Single-step shortcut for tasks with one action and no connectives
2. Model-assisted decomposition over the live agent inventory
3. Keyword heuristic decomposition (and single-step again if nothing matches)

Model failures of any kind degrade to the heuristic path. The execution mode
always comes from the confidence evaluator.
"""

import asyncio
from collections.abc import Sequence

import structlog

from atlas.config import Settings, get_settings
from atlas.core.exceptions import NoAvailableAgentsError, PlanningError
from atlas.core.models import AutonomyLevel, ExecutionPlan, PlanStep
from atlas.database.models import Agent, Task
from atlas.planner.collaborators import (
    ChatClient,
    ConfidenceEvaluator,
    DefaultToolResolver,
    PatternStore,
    ToolResolver,
    TrustScoreService,
)
from atlas.planner.intent import Intent, IntentClassifier, KeywordIntentClassifier, task_text
from atlas.planner.inventory import (
    InventoryEntry,
    build_agent_inventory,
    find_agent_by_type,
    highest_trust,
)
from atlas.planner.llm import parse_plan_response
from atlas.planner.pattern_key import generate_pattern_key
from atlas.planner.prompts import build_system_prompt, build_user_prompt

logger = structlog.get_logger(__name__)

# Rough per-step cost fed to the confidence evaluator
COST_CENTS_PER_STEP = 5


class PlanGenerator:
    """Produces execution plans for tasks."""

    def __init__(
        self,
        trust_service: TrustScoreService,
        confidence_evaluator: ConfidenceEvaluator,
        chat_client: ChatClient | None = None,
        pattern_store: PatternStore | None = None,
        tool_resolver: ToolResolver | None = None,
        classifier: IntentClassifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            trust_service: Source of per-agent trust scores
            confidence_evaluator: Decides the execution mode
            chat_client: Model client; None disables model-assisted planning
            pattern_store: Historical pattern lookups (optional)
            tool_resolver: Agent tool resolution (defaults to role tables)
            classifier: Intent classifier (defaults to keyword matching)
            settings: Settings (defaults to global settings)
        """
        self.trust_service = trust_service
        self.confidence_evaluator = confidence_evaluator
        self.chat_client = chat_client
        self.pattern_store = pattern_store
        self.tool_resolver = tool_resolver or DefaultToolResolver()
        self.classifier = classifier or KeywordIntentClassifier()
        self.settings = settings or get_settings()

    async def generate_plan(
        self, task: Task, agents: Sequence[Agent], account_id: str
    ) -> ExecutionPlan | None:
        """Generate an execution plan.

        Returns:
            The plan, or None when no eligible agent exists
        """
        inventory = await build_agent_inventory(
            agents,
            account_id,
            self.trust_service,
            self.tool_resolver,
            max_concurrency=self.settings.trust_fetch_concurrency,
        )
        if not inventory:
            logger.warning("no_available_agents_for_planning", task_id=task.id, account_id=account_id)
            return None

        text = task_text(task.title, task.description)

        if not self.classifier.is_multi_step(text):
            plan = await self._single_step_plan(task, inventory, account_id)
            strategy = "single_step"
        else:
            plan, strategy = await self._model_or_heuristic_plan(task, inventory, account_id)

        logger.info(
            "plan_generated",
            task_id=task.id,
            strategy=strategy,
            steps=len(plan.steps),
            pattern_key=plan.pattern_key,
            execution_mode=plan.execution_mode.value,
        )
        return plan

    async def generate_plan_or_raise(
        self, task: Task, agents: Sequence[Agent], account_id: str
    ) -> ExecutionPlan:
        """Like generate_plan, but an empty inventory raises NoAvailableAgentsError."""
        plan = await self.generate_plan(task, agents, account_id)
        if plan is None:
            raise NoAvailableAgentsError(f"No available agents to plan task {task.id}")
        return plan

    # ------------------------------------------------------------------
    # Model-assisted planning
    # ------------------------------------------------------------------

    async def _model_or_heuristic_plan(
        self, task: Task, inventory: list[InventoryEntry], account_id: str
    ) -> tuple[ExecutionPlan, str]:
        if self.chat_client is None:
            logger.warning("heuristic_fallback", task_id=task.id, reason="no_chat_client")
            return await self._heuristic_plan(task, inventory, account_id), "heuristic"

        try:
            steps, reasoning = await self._model_steps(task, inventory, account_id)
        except Exception as e:
            logger.warning(
                "llm_planning_failed",
                task_id=task.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._heuristic_plan(task, inventory, account_id), "heuristic"

        return await self._finalize(steps, inventory, account_id, reasoning), "model"

    async def _model_steps(
        self, task: Task, inventory: list[InventoryEntry], account_id: str
    ) -> tuple[list[PlanStep], str]:
        patterns = self.pattern_store.top_patterns(account_id) if self.pattern_store else []

        content = await asyncio.wait_for(
            self.chat_client.complete(
                build_system_prompt(inventory, patterns), build_user_prompt(task)
            ),
            timeout=self.settings.planning_timeout_seconds,
        )
        parsed = parse_plan_response(content)

        steps = repair_steps(parsed.steps, inventory)
        if not steps:
            raise PlanningError("No valid steps after validation")
        return steps, parsed.reasoning or "LLM-generated plan"

    # ------------------------------------------------------------------
    # Fallbacks
    # ------------------------------------------------------------------

    async def _single_step_plan(
        self, task: Task, inventory: list[InventoryEntry], account_id: str
    ) -> ExecutionPlan:
        best = self._pick_best_agent(task, inventory)
        step = PlanStep(
            title=task.title,
            description=task.description or task.title,
            agent_id=best.agent.id,
            agent_alias=best.agent.alias,
            agent_type=best.agent.agent_type,
            tools_required=list(best.tools),
        )
        reasoning = (
            f"Single-step task assigned to {best.agent.alias} "
            f"(trust: {best.trust.overall_score * 100:.0f}%)"
        )
        return await self._finalize([step], inventory, account_id, reasoning)

    async def _heuristic_plan(
        self, task: Task, inventory: list[InventoryEntry], account_id: str
    ) -> ExecutionPlan:
        intents = self.classifier.detect_intents(task_text(task.title, task.description))
        steps: list[PlanStep] = []
        writing_index: int | None = None

        if Intent.RESEARCH in intents:
            entry = find_agent_by_type(inventory, "researcher")
            if entry:
                steps.append(
                    _step_for(
                        entry,
                        "Research phase",
                        "Gather information and research relevant topics",
                        [t for t in ("web_search", "fetch_url") if t in entry.tools],
                    )
                )

        if Intent.WRITING in intents:
            entry = find_agent_by_type(inventory, "content-writer")
            if entry:
                writing_index = len(steps)
                steps.append(
                    _step_for(
                        entry,
                        "Create content",
                        "Write the content based on requirements",
                        [t for t in ("publish_blog_post",) if t in entry.tools],
                        depends_on_index=0 if steps else None,
                    )
                )

        if Intent.IMAGE in intents:
            entry = find_agent_by_type(inventory, "image-generator") or find_agent_by_type(
                inventory, "content-writer"
            )
            if entry:
                steps.append(
                    _step_for(
                        entry,
                        "Generate image",
                        "Create visual assets",
                        [t for t in ("generate_image",) if t in entry.tools],
                        depends_on_index=writing_index,
                    )
                )

        if Intent.CODE in intents:
            entry = find_agent_by_type(inventory, "forge")
            if entry:
                steps.append(
                    _step_for(
                        entry,
                        "Development",
                        "Implement the technical requirements",
                        list(entry.tools),
                        depends_on_index=len(steps) - 1 if steps else None,
                    )
                )

        if not steps:
            logger.warning("single_step_fallback", task_id=task.id, intents=sorted(intents))
            return await self._single_step_plan(task, inventory, account_id)

        reasoning = "Heuristic plan: " + " → ".join(step.title for step in steps)
        return await self._finalize(steps, inventory, account_id, reasoning)

    def _pick_best_agent(self, task: Task, inventory: list[InventoryEntry]) -> InventoryEntry:
        """Role with the most keyword hits that is staffed, else highest trust."""
        scores = self.classifier.score_roles(task_text(task.title, task.description))
        ranked = sorted(
            (role for role, score in scores.items() if score > 0),
            key=lambda role: scores[role],
            reverse=True,
        )
        for role in ranked:
            entry = find_agent_by_type(inventory, role)
            if entry:
                return entry
        return highest_trust(inventory)

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    async def _finalize(
        self,
        steps: list[PlanStep],
        inventory: list[InventoryEntry],
        account_id: str,
        reasoning: str,
    ) -> ExecutionPlan:
        pattern_key = generate_pattern_key(steps)
        payload = build_confidence_payload(steps, pattern_key)
        overrides = collect_autonomy_overrides(inventory)

        confidence = await self.confidence_evaluator.evaluate(payload, account_id, overrides)

        return ExecutionPlan(
            steps=steps,
            confidence=confidence,
            execution_mode=confidence.execution_mode,
            pattern_key=pattern_key,
            reasoning=reasoning,
        )


def _step_for(
    entry: InventoryEntry,
    title: str,
    description: str,
    tools: list[str],
    depends_on_index: int | None = None,
) -> PlanStep:
    return PlanStep(
        title=title,
        description=description,
        agent_id=entry.agent.id,
        agent_alias=entry.agent.alias,
        agent_type=entry.agent.agent_type,
        tools_required=tools,
        depends_on_index=depends_on_index,
    )


def resolve_step_agent(step: PlanStep, inventory: Sequence[InventoryEntry]) -> InventoryEntry | None:
    """Inventory entry for a model-proposed step.

    Exact id, then case-insensitive alias, then role, then the first entry.
    """
    for entry in inventory:
        if entry.agent.id == step.agent_id:
            return entry

    alias = (step.agent_alias or "").lower()
    if alias:
        for entry in inventory:
            if entry.agent.alias.lower() == alias:
                return entry

    for entry in inventory:
        if entry.agent.agent_type == step.agent_type:
            return entry

    return inventory[0] if inventory else None


def repair_steps(steps: Sequence[PlanStep], inventory: Sequence[InventoryEntry]) -> list[PlanStep]:
    """Bind every step to a live inventory agent, dropping unresolvable ones.

    Dependency indices are remapped onto the surviving steps; any that would
    point forward, at the step itself, or at a dropped step are cleared.
    """
    repaired: list[PlanStep] = []
    index_map: dict[int, int] = {}

    for original_index, step in enumerate(steps):
        entry = resolve_step_agent(step, inventory)
        if entry is None:
            logger.warning("plan_step_dropped", title=step.title, agent_id=step.agent_id)
            continue

        if entry.agent.id != step.agent_id:
            logger.info(
                "plan_step_agent_repaired",
                title=step.title,
                proposed_agent_id=step.agent_id,
                resolved_agent_id=entry.agent.id,
            )

        depends_on = step.depends_on_index
        if depends_on is not None:
            if 0 <= depends_on < original_index and depends_on in index_map:
                depends_on = index_map[depends_on]
            else:
                logger.warning(
                    "plan_step_dependency_cleared", title=step.title, depends_on_index=depends_on
                )
                depends_on = None

        index_map[original_index] = len(repaired)
        repaired.append(
            step.model_copy(
                update={
                    "agent_id": entry.agent.id,
                    "agent_alias": entry.agent.alias,
                    "agent_type": entry.agent.agent_type,
                    "depends_on_index": depends_on,
                }
            )
        )

    return repaired


def build_confidence_payload(steps: Sequence[PlanStep], pattern_key: str) -> dict:
    """Confidence evaluator input for a step list."""
    payload_steps = []
    for step in steps:
        item = {"agentId": step.agent_id, "toolsRequired": list(step.tools_required)}
        if step.depends_on_index is not None:
            item["dependsOnIndex"] = step.depends_on_index
        payload_steps.append(item)

    return {
        "steps": payload_steps,
        "patternKey": pattern_key,
        "estimatedCostCents": len(steps) * COST_CENTS_PER_STEP,
    }


def collect_autonomy_overrides(inventory: Sequence[InventoryEntry]) -> dict[str, AutonomyLevel]:
    overrides: dict[str, AutonomyLevel] = {}
    for entry in inventory:
        raw = entry.agent.autonomy_override
        if not raw:
            continue
        try:
            overrides[entry.agent.id] = AutonomyLevel(raw)
        except ValueError:
            logger.warning("unknown_autonomy_override", agent_id=entry.agent.id, value=raw)
    return overrides
