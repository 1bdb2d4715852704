"""Agent inventory: eligible workers with trust scores and resolved tools."""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from atlas.core.models import TrustScore
from atlas.database.models import Agent
from atlas.planner.collaborators import ToolResolver, TrustScoreService

logger = structlog.get_logger(__name__)

ORCHESTRATOR_ROLE = "orchestrator"


@dataclass
class InventoryEntry:
    """An eligible agent for one planning call. Never persisted."""

    agent: Agent
    trust: TrustScore
    tools: list[str]


def is_eligible(agent: Agent) -> bool:
    """Active, unpaused, not stopped, not an orchestrator."""
    return (
        bool(agent.is_active)
        and agent.paused_at is None
        and agent.deleted_at is None
        and agent.health_status != "stopped"
        and agent.agent_type != ORCHESTRATOR_ROLE
    )


async def build_agent_inventory(
    agents: Sequence[Agent],
    account_id: str,
    trust_service: TrustScoreService,
    tool_resolver: ToolResolver,
    max_concurrency: int = 8,
) -> list[InventoryEntry]:
    """Filter the roster and attach trust scores and tool lists.

    Trust scores are fetched concurrently, at most ``max_concurrency`` at a
    time. The result keeps roster order.

    Returns:
        Inventory entries, empty if no agent qualifies
    """
    eligible = [agent for agent in agents if is_eligible(agent)]
    if not eligible:
        logger.warning("inventory_empty", account_id=account_id, roster_size=len(agents))
        return []

    semaphore = asyncio.Semaphore(max(1, min(max_concurrency, len(eligible))))

    async def fetch(agent: Agent) -> InventoryEntry:
        async with semaphore:
            trust = await trust_service.get_trust_score(agent.id, account_id)
        return InventoryEntry(agent=agent, trust=trust, tools=tool_resolver.tools_for(agent))

    inventory = await asyncio.gather(*(fetch(agent) for agent in eligible))

    logger.debug(
        "inventory_built",
        account_id=account_id,
        roster_size=len(agents),
        eligible=len(inventory),
    )
    return list(inventory)


def find_agent_by_type(inventory: Sequence[InventoryEntry], agent_type: str) -> InventoryEntry | None:
    """Highest-trust entry of a role; the first one wins a tie."""
    best: InventoryEntry | None = None
    for entry in inventory:
        if entry.agent.agent_type != agent_type:
            continue
        if best is None or entry.trust.overall_score > best.trust.overall_score:
            best = entry
    return best


def highest_trust(inventory: Sequence[InventoryEntry]) -> InventoryEntry:
    """Highest-trust entry overall; the first one wins a tie."""
    best = inventory[0]
    for entry in inventory[1:]:
        if entry.trust.overall_score > best.trust.overall_score:
            best = entry
    return best
