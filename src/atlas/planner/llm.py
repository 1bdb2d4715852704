"""Chat client for model-assisted planning and strict decoding of its reply."""

import asyncio

import anthropic
import structlog
from anthropic import Anthropic
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from atlas.config import Settings, get_settings
from atlas.core.exceptions import PlanningError
from atlas.core.models import PlanStep

logger = structlog.get_logger(__name__)

RETRYABLE_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class AnthropicChatClient:
    """ChatClient over the Anthropic Messages API."""

    def __init__(
        self,
        config: Settings | None = None,
        anthropic_client: Anthropic | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Settings configuration (defaults to global settings)
            anthropic_client: Anthropic client instance (optional, will create if not provided)
        """
        self.config = config or get_settings()
        self.anthropic_client = anthropic_client or Anthropic(api_key=self.config.anthropic_api_key)

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def complete(self, system: str, user: str) -> str:
        """Send one system + user turn and return the concatenated text blocks."""
        logger.info("calling_claude_api", system_length=len(system), user_length=len(user))

        response = await asyncio.to_thread(
            self.anthropic_client.messages.create,
            model=self.config.anthropic_model,
            max_tokens=self.config.anthropic_max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )

        text = "".join(block.text for block in response.content if hasattr(block, "text"))

        logger.info(
            "claude_api_success",
            response_length=len(text),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return text


class PlanResponse(BaseModel):
    """Schema the planning reply must satisfy."""

    steps: list[PlanStep] = Field(..., min_length=1)
    reasoning: str = "LLM-generated plan"


def extract_first_json_object(content: str) -> str:
    """Return the first balanced ``{...}`` in content.

    Braces inside JSON strings are ignored.

    Raises:
        PlanningError: If no balanced object exists
    """
    start = content.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(content)):
            char = content[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return content[start : index + 1]
        # Unbalanced from this brace; try the next one
        start = content.find("{", start + 1)

    raise PlanningError("No JSON object found in planning response")


def parse_plan_response(content: str) -> PlanResponse:
    """Decode the model reply into a PlanResponse.

    Raises:
        PlanningError: On missing, malformed or schema-violating JSON
    """
    raw = extract_first_json_object(content)
    try:
        return PlanResponse.model_validate_json(raw)
    except PydanticValidationError as e:
        raise PlanningError(f"Planning response failed validation: {e.error_count()} error(s)") from e
