"""
Configuration settings for the retryable model layer.

All settings are loaded from environment variables with sensible defaults.
Use .env file for local development.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Application ===
    APP_NAME: str = "retryable-llm"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # === Ollama Configuration ===
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "qwen2.5:7b"
    OLLAMA_EMBEDDING_MODEL: str = "nomic-embed-text"
    OLLAMA_TIMEOUT: int = 60  # seconds

    # === Retry & Fallback ===
    RETRY_RESET: str = "after-request"  # after-request | after-N-requests | after-N-seconds
    RETRY_TIMEOUT_MS: int = 60000  # Fresh timeout given to a retry after a timeout
    MAX_RETRY_AFTER_MS: int = 60000  # Cap for delays taken from Retry-After headers


# Global settings instance
settings = Settings()
