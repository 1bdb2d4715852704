"""Cost estimation for proposed plan steps.

Pure calculation: no I/O, no persistence.
"""

from dataclasses import dataclass, field

# Approximate blended (input + output) cost per 1K tokens, in cents
MODEL_COST_PER_1K_TOKENS: dict[str, float] = {
    "haiku": 0.1,
    "sonnet": 1.5,
    "opus": 7.5,
}

# Token estimates by role when a step gives none
DEFAULT_TOKENS_BY_AGENT_TYPE: dict[str, int] = {
    "content-writer": 4000,
    "researcher": 3000,
    "image-generator": 1000,
    "qa-tester": 2000,
    "orchestrator": 2000,
    "forge": 5000,
}

DEFAULT_MODEL = "sonnet"
DEFAULT_TOKENS = 2500


@dataclass
class StepEstimate:
    step: int
    agent_type: str
    model: str
    estimated_tokens: int
    estimated_cost_cents: float


@dataclass
class CostEstimate:
    steps: list[StepEstimate] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return sum(s.estimated_tokens for s in self.steps)

    @property
    def total_cost_cents(self) -> float:
        return sum(s.estimated_cost_cents for s in self.steps)

    def format(self) -> str:
        """Human-readable breakdown."""
        lines = [
            f"Estimated cost: ${self.total_cost_cents / 100:.2f} ({self.total_tokens:,} tokens)",
            "",
        ]
        lines.extend(
            f"  Step {s.step}: {s.agent_type} ({s.model}) — ~{s.estimated_tokens:,} tokens"
            f" — ${s.estimated_cost_cents / 100:.4f}"
            for s in self.steps
        )
        return "\n".join(lines)


def resolve_tokens(agent_type: str, estimated_tokens: int | None = None) -> int:
    """Explicit estimate, else the role default, else the global default."""
    if estimated_tokens:
        return estimated_tokens
    return DEFAULT_TOKENS_BY_AGENT_TYPE.get(agent_type, DEFAULT_TOKENS)


def resolve_rate(model: str | None) -> tuple[str, float]:
    """(model name, cents per 1K tokens); unknown models bill at the default rate."""
    name = model or DEFAULT_MODEL
    rate = MODEL_COST_PER_1K_TOKENS.get(name, MODEL_COST_PER_1K_TOKENS[DEFAULT_MODEL])
    return name, rate


def estimate_step_cost(tokens: int, rate_per_1k: float) -> float:
    return tokens / 1000 * rate_per_1k


def estimate_plan_cost(steps: list[tuple[str, int | None, str | None]]) -> CostEstimate:
    """Estimate (agent_type, estimated_tokens, model) steps.

    Costs are left unrounded so totals stay linear in the token counts;
    rounding happens only in ``CostEstimate.format``.
    """
    estimate = CostEstimate()
    for index, (agent_type, tokens, model) in enumerate(steps, start=1):
        resolved_tokens = resolve_tokens(agent_type, tokens)
        model_name, rate = resolve_rate(model)
        estimate.steps.append(
            StepEstimate(
                step=index,
                agent_type=agent_type,
                model=model_name,
                estimated_tokens=resolved_tokens,
                estimated_cost_cents=estimate_step_cost(resolved_tokens, rate),
            )
        )
    return estimate
