from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables.

    Bot settings (AI name, API keys, instance id) live in the database
    settings row and are read per message, not here.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./assistente.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Webhook Security - signature check is skipped when empty
    WEBHOOK_SECRET: str = ""

    # Evolution API (WhatsApp transport)
    EVOLUTION_API_URL: str = "https://sua-evolution-api.com"

    # OpenRouter (chat completions)
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_REFERER: str = "https://assistente-tecnico.com"
    OPENROUTER_TITLE: str = "Assistente Técnico IA"

    # Routing thresholds
    PRODUCT_INTENT_THRESHOLD: float = 0.7
    CONTEXT_HINT_THRESHOLD: float = 0.5

    # None keeps the HTTP client default (no timeout)
    HTTP_TIMEOUT_SECONDS: Optional[float] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
