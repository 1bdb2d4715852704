"""Plan shape fingerprint used to join plans with historical outcomes."""

from collections.abc import Sequence

from atlas.core.models import PlanStep


def generate_pattern_key(steps: Sequence[PlanStep]) -> str:
    """Build ``"<agent types>|<tools>|<step count>"``.

    Agent types and tool names are deduplicated and sorted, so any ordering of
    the same steps yields the same key.
    """
    agent_types = sorted({step.agent_type for step in steps})
    tools = sorted({tool for step in steps for tool in step.tools_required})
    return f"{','.join(agent_types)}|{','.join(tools)}|{len(steps)}"
