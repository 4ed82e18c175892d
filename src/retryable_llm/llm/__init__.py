"""
Model boundary: abstract base classes and the Ollama adapters.

Components:
- BaseLanguageModel / BaseEmbeddingModel / BaseImageModel: contract for wrapped models
- OllamaLanguageModel / OllamaEmbeddingModel: httpx-based adapters
- model_key: identity key used for max_attempts accounting
"""

from retryable_llm.llm.base_model import (
    BaseEmbeddingModel,
    BaseImageModel,
    BaseLanguageModel,
    is_model,
    model_key,
    supports_embedding,
    supports_image_generation,
)
from retryable_llm.llm.ollama_model import OllamaEmbeddingModel, OllamaLanguageModel

__all__ = [
    "BaseLanguageModel",
    "BaseEmbeddingModel",
    "BaseImageModel",
    "OllamaLanguageModel",
    "OllamaEmbeddingModel",
    "model_key",
    "is_model",
    "supports_embedding",
    "supports_image_generation",
]
