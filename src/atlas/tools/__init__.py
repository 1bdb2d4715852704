"""Orchestrator tool surface and cost estimation."""

from atlas.tools.base import ToolContext, ToolRegistry, ToolResult
from atlas.tools.cost import estimate_plan_cost
from atlas.tools.orchestrator import build_orchestrator_registry

__all__ = [
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "build_orchestrator_registry",
    "estimate_plan_cost",
]
