"""Shared test fixtures and configuration for all tests.

Fake models and stream helpers live in tests/fakes.py.
"""

import pytest

from retryable_llm.config import Settings
from retryable_llm.models.llm_models import GenerateOptions


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults for local testing."""
    return Settings(
        APP_NAME="retryable-llm (Test)",
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",
        OLLAMA_BASE_URL="http://ollama.test:11434",
        OLLAMA_MODEL="qwen2.5:7b",
        OLLAMA_TIMEOUT=5,
        RETRY_RESET="after-request",
        RETRY_TIMEOUT_MS=15000,
        MAX_RETRY_AFTER_MS=1000,
    )


@pytest.fixture
def options() -> GenerateOptions:
    """Minimal generate options."""
    return GenerateOptions(prompt="Say hello")
