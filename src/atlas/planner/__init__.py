"""Plan generation and execution."""

from atlas.planner.executor import PlanExecutor
from atlas.planner.generator import PlanGenerator
from atlas.planner.pattern_key import generate_pattern_key

__all__ = ["PlanExecutor", "PlanGenerator", "generate_pattern_key"]
