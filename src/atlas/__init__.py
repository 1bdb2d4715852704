"""Atlas - task decomposition, plan execution and orchestrator tools."""

__version__ = "0.1.0"
