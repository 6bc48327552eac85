"""Unit tests for configuration module."""

import logging
from unittest.mock import patch

from chatforge.core.config import Settings, configure_logging


class TestSettings:
    """Test cases for application settings."""

    def test_default_settings(self) -> None:
        """Test default settings values."""
        settings = Settings(_env_file=None)

        assert settings.environment == "development"
        assert settings.log_level == "INFO"
        assert settings.log_prompts is False
        assert settings.tokenizer_model == "gpt-4o"
        assert settings.default_source == "openai"
        assert settings.fastapi_port == 8000

    def test_environment_detection_development(self) -> None:
        """Test development environment detection."""
        settings = Settings(_env_file=None)

        assert settings.is_development() is True
        assert settings.is_production() is False

    def test_environment_detection_production(self) -> None:
        """Test production environment detection."""
        with patch.dict("os.environ", {"ENVIRONMENT": "production"}):
            settings = Settings(_env_file=None)

            assert settings.is_production() is True
            assert settings.is_development() is False

    @patch.dict("os.environ", {
        "CLAUDE_API_KEY": "sk-ant-test",
        "CUSTOM_URL": "http://localhost:5001/v1",
        "REQUEST_TIMEOUT": "15",
    })
    def test_custom_environment_variables(self) -> None:
        """Test custom environment variable loading."""
        settings = Settings(_env_file=None)

        assert settings.claude_api_key == "sk-ant-test"
        assert settings.custom_url == "http://localhost:5001/v1"
        assert settings.request_timeout == 15.0

    @patch.dict("os.environ", {"OPENROUTER_API_KEY": "or-key"})
    def test_api_key_lookup_by_source(self) -> None:
        """Test API keys are resolved by chat completion source name."""
        settings = Settings(_env_file=None)

        assert settings.api_key_for("openrouter") == "or-key"
        assert settings.api_key_for("ai21") == ""


class TestLogging:
    """Test cases for logging configuration."""

    def test_configure_logging_uses_level(self) -> None:
        """Test the configured level is passed to basicConfig."""
        with patch("chatforge.core.config.logging.basicConfig") as basic_config:
            configure_logging("debug")

        basic_config.assert_called_once()
        assert basic_config.call_args.kwargs["level"] == logging.DEBUG
