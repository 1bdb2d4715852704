"""Tool contract shared by the orchestrator tool surface."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)


class ToolResult(BaseModel):
    """Result returned to the calling agent.

    ``data["formatted"]`` is the human-readable summary for the transcript.
    """

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def ok(cls, formatted: str, **fields: Any) -> "ToolResult":
        return cls(success=True, data={"formatted": formatted, **fields})

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    @property
    def formatted(self) -> str:
        if self.success and self.data:
            return str(self.data.get("formatted", ""))
        return self.error or ""


@dataclass
class ToolContext:
    """Who is calling and from which task."""

    account_id: str
    context_task_id: str | None = None
    agent_id: str | None = None

    @property
    def actor(self) -> str:
        return self.agent_id or "orchestrator"


ToolHandler = Callable[[Any, ToolContext], ToolResult]


@dataclass
class ToolDefinition:
    name: str
    description: str
    params_model: type[BaseModel]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        """JSON-schema-style definition."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.params_model.model_json_schema(),
        }


def format_validation_error(tool_name: str, error: PydanticValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "parameters"
        problems.append(f"{location}: {item['msg']}")
    return f"Invalid parameters for {tool_name}: " + "; ".join(problems)


class ToolRegistry:
    """Named, schema-validated tool dispatch.

    Each invocation is a unit of work: the session commits when the tool
    succeeds and rolls back otherwise.
    """

    def __init__(self, session: Session | None = None) -> None:
        self.session = session
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, definition: ToolDefinition) -> None:
        self._tools[definition.name] = definition

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [definition.schema() for definition in self._tools.values()]

    def invoke(self, name: str, params: dict[str, Any] | None, context: ToolContext) -> ToolResult:
        """Validate parameters and run a tool. Never raises."""
        definition = self._tools.get(name)
        if definition is None:
            return ToolResult.fail(f"Unknown tool: {name}")

        try:
            parsed = definition.params_model.model_validate(params or {})
        except PydanticValidationError as e:
            logger.warning("tool_params_invalid", tool=name, errors=e.error_count())
            return ToolResult.fail(format_validation_error(name, e))

        try:
            result = definition.handler(parsed, context)
        except Exception as e:
            self._rollback()
            logger.error("tool_failed", tool=name, error=str(e), error_type=type(e).__name__)
            return ToolResult.fail(f"Failed to {name.replace('_', ' ')}: {e}")

        if not result.success:
            self._rollback()
        else:
            try:
                self._commit()
            except Exception as e:
                self._rollback()
                logger.error(
                    "tool_commit_failed", tool=name, error=str(e), error_type=type(e).__name__
                )
                return ToolResult.fail(f"Failed to {name.replace('_', ' ')}: {e}")

        logger.info("tool_invoked", tool=name, success=result.success, account_id=context.account_id)
        return result

    def _commit(self) -> None:
        if self.session is not None:
            self.session.commit()

    def _rollback(self) -> None:
        if self.session is not None:
            self.session.rollback()

