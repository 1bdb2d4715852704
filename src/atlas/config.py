"""Configuration management for Atlas."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///.atlas/atlas.sqlite", description="SQLAlchemy database URL"
    )

    # Anthropic Configuration
    anthropic_api_key: str | None = Field(
        default=None, description="Anthropic API Key (planning falls back to heuristics without it)"
    )
    anthropic_model: str = Field(default="claude-sonnet-4-5-20250929", description="Claude model")
    anthropic_max_tokens: int = Field(default=1000, description="Max tokens per planning request")

    # Planner Configuration
    planning_timeout_seconds: float = Field(
        default=30.0, description="Timeout for the model-assisted planning call"
    )
    trust_fetch_concurrency: int = Field(
        default=8, description="Maximum concurrent trust score lookups while building inventory"
    )
    plan_cursor_max_retries: int = Field(
        default=5, description="Compare-and-swap attempts when advancing a plan cursor"
    )

    # Orchestrator Limits
    default_max_subtasks_per_parent: int = Field(
        default=10, description="Subtask limit used when an account has no orchestrator config"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and console renderers are supported."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @field_validator("trust_fetch_concurrency", "plan_cursor_max_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
