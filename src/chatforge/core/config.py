"""Application configuration using pydantic-settings."""

import logging
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    debug: bool = True
    log_prompts: bool = Field(
        default=False,
        description="Log every prompt assembly step for each request",
    )

    # Tokenizer Configuration
    tokenizer_model: str = Field(
        default="gpt-4o",
        description="Model name used to pick the tiktoken encoding",
    )

    # Vendor Configuration
    default_source: str = Field(
        default="openai",
        description="Chat completion source used when a request names none",
    )
    openai_api_key: str = ""
    claude_api_key: str = ""
    openrouter_api_key: str = ""
    mistralai_api_key: str = ""
    groq_api_key: str = ""
    deepseek_api_key: str = ""
    xai_api_key: str = ""
    perplexity_api_key: str = ""
    moonshot_api_key: str = ""
    fireworks_api_key: str = ""
    custom_api_key: str = ""
    custom_url: str = Field(
        default="",
        description="Base URL of a custom OpenAI-compatible endpoint",
    )

    # Network Configuration
    request_timeout: float = Field(
        default=120.0,
        description="Timeout in seconds for vendor requests",
    )
    image_fetch_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for fetching remote images and videos",
    )

    # FastAPI Configuration
    fastapi_host: str = "0.0.0.0"
    fastapi_port: int = 8000

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def api_key_for(self, source: str) -> str:
        """Look up the API key configured for a chat completion source."""
        return getattr(self, f"{source}_api_key", "")


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Global settings instance
settings = Settings()
