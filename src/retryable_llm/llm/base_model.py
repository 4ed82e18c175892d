"""
Abstract base classes for wrapped models.

Defines the boundary contract between the retry layer and a model
collaborator. The retry layer never constructs models and only relies on
`provider`, `model_id` and the call methods, so any object exposing those
works; these ABCs exist for adapters such as the Ollama models and to
document the contract.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

import structlog

from retryable_llm.models.llm_models import (
    EmbedOptions,
    EmbedResult,
    GenerateOptions,
    GenerateResult,
    ImageOptions,
    ImageResult,
    StreamPart,
)


logger = structlog.get_logger(__name__)


def model_key(model: Any) -> str:
    """
    Identity key for a model: "provider/model_id".

    Two separately constructed handles to the same provider model share a
    key, so they share one max_attempts budget.
    """
    return f"{model.provider}/{model.model_id}"


def is_model(value: Any) -> bool:
    """True if `value` looks like a model instance (has provider and model_id)."""
    return (
        not isinstance(value, (str, type))
        and isinstance(getattr(value, "provider", None), str)
        and isinstance(getattr(value, "model_id", None), str)
    )


def supports_embedding(model: Any) -> bool:
    return callable(getattr(model, "embed", None))


def supports_image_generation(model: Any) -> bool:
    return callable(getattr(model, "generate_images", None))


class BaseLanguageModel(ABC):
    """
    Abstract base class for language models.

    Responsibilities:
    - Send generation requests to the provider
    - Translate responses into GenerateResult / StreamPart
    - Raise ModelCallError (or an abort error) on failure

    Does NOT handle:
    - Retry or fallback between models (that's RetryEngine's job)
    """

    def __init__(self, provider: str, model_id: str):
        self.provider = provider
        self.model_id = model_id

    @abstractmethod
    async def generate(self, options: GenerateOptions) -> GenerateResult:
        """
        Generate a complete response.

        Raises:
            ModelCallError: Provider or transport failure
            RequestTimeoutError: The request timed out
        """
        pass

    @abstractmethod
    async def stream(self, options: GenerateOptions) -> AsyncIterator[StreamPart]:
        """
        Start a streamed response.

        Awaiting this performs the request setup and raises if setup fails.
        The returned iterator may yield an error part instead of raising
        when the provider fails mid-stream.
        """
        pass

    async def close(self):
        """Release connections. Default implementation does nothing."""
        logger.debug("Closing model", model=model_key(self))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider}, model_id={self.model_id})"


class BaseEmbeddingModel(ABC):
    """Abstract base class for embedding models."""

    def __init__(self, provider: str, model_id: str):
        self.provider = provider
        self.model_id = model_id

    @abstractmethod
    async def embed(self, options: EmbedOptions) -> EmbedResult:
        """
        Embed `options.values`.

        Raises:
            ModelCallError: Provider or transport failure
        """
        pass

    async def close(self):
        logger.debug("Closing model", model=model_key(self))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider}, model_id={self.model_id})"


class BaseImageModel(ABC):
    """
    Abstract base class for image generation models.

    max_images_per_call is the provider's limit for `ImageOptions.n`
    (None when unknown).
    """

    max_images_per_call: Optional[int] = None

    def __init__(self, provider: str, model_id: str):
        self.provider = provider
        self.model_id = model_id

    @abstractmethod
    async def generate_images(self, options: ImageOptions) -> ImageResult:
        """
        Generate `options.n` images.

        Raises:
            ModelCallError: Provider or transport failure
        """
        pass

    async def close(self):
        logger.debug("Closing model", model=model_key(self))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider}, model_id={self.model_id})"
