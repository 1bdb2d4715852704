"""Unit tests for configuration management."""

import os
from unittest.mock import patch

import pytest

from atlas.config import Settings, get_settings


class TestSettings:
    """Tests for Settings model."""

    def test_settings_defaults(self) -> None:
        """Test default settings values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

            assert settings.database_url == "sqlite:///.atlas/atlas.sqlite"
            assert settings.anthropic_api_key is None
            assert settings.anthropic_max_tokens == 1000
            assert settings.planning_timeout_seconds == 30.0
            assert settings.trust_fetch_concurrency == 8
            assert settings.plan_cursor_max_retries == 5
            assert settings.default_max_subtasks_per_parent == 10
            assert settings.log_level == "INFO"
            assert settings.log_format == "json"

    def test_settings_from_env(self) -> None:
        """Test loading settings from environment variables."""
        with patch.dict(
            os.environ,
            {
                "ANTHROPIC_API_KEY": "test_anthropic_key",
                "ANTHROPIC_MODEL": "claude-opus-4-5-20251101",
                "DATABASE_URL": "postgresql://localhost/atlas_test",
                "PLANNING_TIMEOUT_SECONDS": "12.5",
                "TRUST_FETCH_CONCURRENCY": "3",
                "LOG_FORMAT": "CONSOLE",
            },
            clear=True,
        ):
            settings = Settings(_env_file=None)

            assert settings.anthropic_api_key == "test_anthropic_key"
            assert settings.anthropic_model == "claude-opus-4-5-20251101"
            assert settings.database_url == "postgresql://localhost/atlas_test"
            assert settings.planning_timeout_seconds == 12.5
            assert settings.trust_fetch_concurrency == 3
            assert settings.log_format == "console"

    def test_invalid_log_format(self) -> None:
        with patch.dict(os.environ, {"LOG_FORMAT": "xml"}, clear=True):
            with pytest.raises(Exception):  # pydantic will raise ValidationError
                Settings(_env_file=None)

    @pytest.mark.parametrize("field", ["trust_fetch_concurrency", "plan_cursor_max_retries"])
    def test_non_positive_limits_rejected(self, field: str) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(Exception):
                Settings(_env_file=None, **{field: 0})


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_singleton(self) -> None:
        """Test that get_settings returns the same instance."""
        import atlas.config

        atlas.config._settings = None
        try:
            with patch.dict(os.environ, {}, clear=True):
                settings1 = get_settings()
                settings2 = get_settings()

                assert settings1 is settings2
        finally:
            atlas.config._settings = None
