"""Unit tests for plan pattern keys."""

from itertools import permutations

from atlas.core.models import PlanStep
from atlas.planner.pattern_key import generate_pattern_key


def _step(agent_type: str, tools: list[str]) -> PlanStep:
    return PlanStep(title=agent_type, agent_type=agent_type, tools_required=tools)


def test_pattern_key_format() -> None:
    steps = [
        _step("researcher", ["web_search", "fetch_url"]),
        _step("content-writer", ["publish_blog_post", "web_search"]),
    ]

    assert (
        generate_pattern_key(steps)
        == "content-writer,researcher|fetch_url,publish_blog_post,web_search|2"
    )


def test_pattern_key_ignores_step_order() -> None:
    steps = [
        _step("researcher", ["web_search"]),
        _step("content-writer", ["publish_blog_post"]),
        _step("image-generator", ["generate_image"]),
    ]

    keys = {generate_pattern_key(list(order)) for order in permutations(steps)}

    assert len(keys) == 1


def test_pattern_key_counts_duplicate_roles() -> None:
    steps = [_step("content-writer", []), _step("content-writer", [])]

    assert generate_pattern_key(steps) == "content-writer||2"


def test_pattern_key_tools_none_treated_as_empty() -> None:
    step = PlanStep(title="x", agentType="forge", toolsRequired=None)

    assert generate_pattern_key([step]) == "forge||1"
