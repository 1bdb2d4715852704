"""Exception hierarchy for Atlas."""


class AtlasError(Exception):
    """Base class for Atlas errors."""

    pass


class NotFoundError(AtlasError):
    """Raised when a database record is not found."""

    pass


class ValidationError(AtlasError):
    """Raised when input fails a business rule (limits, unknown agents, bad status)."""

    pass


class NoAvailableAgentsError(AtlasError):
    """Raised when no eligible agent exists for planning."""

    pass


class PlanningError(AtlasError):
    """Raised when model-assisted planning produces nothing usable.

    Always handled inside the planner by falling back to heuristics.
    """

    pass


class ConcurrentUpdateError(AtlasError):
    """Raised when an optimistic update keeps losing to concurrent writers."""

    pass
