"""Application configuration using pydantic-settings."""

from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "ResetNow Chat"
    environment: str = "development"
    log_level: str = "info"

    # Chat model
    chat_backend: Literal["openai", "offline"] = "openai"
    openai_endpoint: str = "https://api.openai.com/v1/chat/completions"
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = 500
    openai_temperature: float = 0.4
    openai_timeout: float = 30.0
    history_window: int = 10

    # Credentials (name looked up through the credential provider)
    openai_api_key: SecretStr | None = None
    openai_api_key_name: str = "openai_api_key"

    # Storage
    storage_backend: Literal["memory", "mongodb"] = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "resetnow"
    mongodb_collection: str = "chat_sessions"

    # Conversation
    greeting_inactivity_hours: float = 6.0

    # CORS
    frontend_url: str = "http://localhost:3000"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency for injecting settings."""
    return settings
