"""Prompt text for model-assisted planning."""

from collections.abc import Sequence

from atlas.core.models import HistoricalPattern
from atlas.database.models import Task
from atlas.planner.inventory import InventoryEntry

PLANNING_RULES = """Rules:
- Assign steps to SPECIFIC agents by their ID (use the most trusted agent that has the right tools)
- Each step should be achievable by a single agent with its available tools
- List the tools each step will need (from the agent's tool list)
- Use dependsOnIndex when one step needs output from a previous step (0-based index)
- Prefer agents with higher trust scores and relevant tool experience
- Keep plans concise: 1-4 steps. Don't over-decompose simple tasks.
- If only one step is needed, return a single-step plan.

Respond with ONLY valid JSON:
{
  "steps": [
    {
      "title": "Short step title",
      "description": "What this step should accomplish",
      "agentId": "uuid-of-agent",
      "agentAlias": "agent-name",
      "agentType": "agent-type",
      "toolsRequired": ["tool_name"],
      "dependsOnIndex": null
    }
  ],
  "reasoning": "Why this plan was chosen"
}"""


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def format_inventory(inventory: Sequence[InventoryEntry]) -> str:
    """One block per agent: alias, role, trust, tools, capabilities."""
    blocks = []
    for entry in inventory:
        agent, trust = entry.agent, entry.trust
        lines = [
            f"Agent: {agent.alias} ({agent.agent_type})",
            f"  ID: {agent.id}",
            f"  Trust: {_pct(trust.overall_score)} | Recent: {_pct(trust.recent_success_rate)}"
            f" | Health: {trust.health_status}",
            f"  Executions: {trust.total_executions}",
            f"  Tools: {', '.join(entry.tools) or 'none'}",
            f"  Capabilities: {', '.join(agent.capabilities or []) or 'general'}",
        ]
        if agent.description:
            lines.append(f"  {agent.description}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def format_patterns(patterns: Sequence[HistoricalPattern]) -> str:
    if not patterns:
        return ""
    lines = [
        f"Pattern: {' → '.join(p.agent_types) or p.pattern_key} ({p.step_count} steps)"
        f" | Success: {_pct(p.success_rate)} over {p.total_executions} runs"
        for p in patterns
    ]
    return "\nHistorical patterns that worked well:\n" + "\n".join(lines)


def build_system_prompt(
    inventory: Sequence[InventoryEntry], patterns: Sequence[HistoricalPattern]
) -> str:
    return (
        "You are Atlas, an AI orchestrator that creates execution plans for tasks.\n\n"
        "Given a goal and available agents with their trust scores, "
        "create an optimal step-by-step plan.\n\n"
        f"Available Agents:\n{format_inventory(inventory)}\n"
        f"{format_patterns(patterns)}\n\n"
        f"{PLANNING_RULES}"
    )


def build_user_prompt(task: Task) -> str:
    return (
        "Create a plan for this task:\n\n"
        f"Title: {task.title}\n"
        f"Description: {task.description or 'No description'}\n"
        f"Priority: {task.priority or 'medium'}"
    )
