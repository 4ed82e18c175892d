"""
Retryable model wrappers.

A wrapper exposes the same interface as the model it wraps (provider,
model_id, generate/stream, embed or generate_images), so callers swap it in
without changes.
Each call is one logical request: the sticky manager picks the start model,
the retry engine runs the attempt loop, and the winning model is reported
back to the sticky manager.

Example:
    model = create_retryable(
        model=OllamaLanguageModel("qwen2.5:7b"),
        retries=[
            service_unavailable(OllamaLanguageModel("llama3.1:8b")),
            OllamaLanguageModel("mistral:7b"),
        ],
        reset="after-5-requests",
    )
    result = await model.generate(GenerateOptions(prompt="Hello"))
"""

import time
from typing import Any, AsyncIterator, Callable, Optional, Sequence, Union

import structlog

from retryable_llm.config import settings
from retryable_llm.exceptions import NoImageGeneratedError
from retryable_llm.llm.base_model import (
    model_key,
    supports_embedding,
    supports_image_generation,
)
from retryable_llm.models.llm_models import (
    EmbedOptions,
    EmbedResult,
    GenerateOptions,
    GenerateResult,
    ImageOptions,
    ImageResult,
    StreamPart,
)
from retryable_llm.retry.engine import Hook, RetryEngine
from retryable_llm.retry.reset import StickyModelManager
from retryable_llm.retry.resolver import ModelResolver, resolve_model as resolve_model_ref
from retryable_llm.retry.strategies import RetryItem
from retryable_llm.retry.streaming import stream_with_retry

logger = structlog.get_logger(__name__)

Disabled = Union[bool, Callable[[], bool], None]


def _is_disabled(disabled: Disabled) -> bool:
    """Evaluated per request so a callable can flip retries on and off at runtime."""
    if callable(disabled):
        return bool(disabled())
    return bool(disabled)


async def _generate(model: Any, options: GenerateOptions) -> GenerateResult:
    return await model.generate(options)


async def _embed(model: Any, options: EmbedOptions) -> EmbedResult:
    return await model.embed(options)


async def _generate_images(model: Any, options: ImageOptions) -> ImageResult:
    result = await model.generate_images(options)
    if not result.images:
        raise NoImageGeneratedError(
            f"No image generated by {model_key(model)}",
            details={"warnings": list(result.warnings)},
        )
    return result


class _RetryableBase:
    """Shared construction for the language, embedding and image wrappers."""

    def __init__(
        self,
        model: Any,
        retries: Sequence[RetryItem],
        disabled: Disabled = None,
        reset: Optional[str] = None,
        on_error: Optional[Hook] = None,
        on_retry: Optional[Hook] = None,
        resolve_model: Optional[ModelResolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.model = resolve_model_ref(model, resolve_model)
        self.disabled = disabled
        self.engine = RetryEngine(
            retries,
            on_error=on_error,
            on_retry=on_retry,
            resolve_model=resolve_model,
        )
        self.sticky = StickyModelManager(
            self.model, reset or settings.RETRY_RESET, clock=clock
        )

        logger.info(
            "Retryable model created",
            model=model_key(self.model),
            retries=len(self.engine.entries),
            reset=reset or settings.RETRY_RESET,
        )

    @property
    def provider(self) -> str:
        return self.model.provider

    @property
    def model_id(self) -> str:
        return self.model.model_id

    async def close(self):
        """Close the primary model if it holds connections."""
        close = getattr(self.model, "close", None)
        if close is not None:
            await close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={model_key(self.model)})"


class RetryableLanguageModel(_RetryableBase):
    """Language model wrapper with retries for generate and stream."""

    async def generate(self, options: GenerateOptions) -> GenerateResult:
        """
        Generate with retries.

        Successful results are offered to the rules, so a rule can reject
        e.g. a content-filtered answer and fall back to another model.

        Raises:
            The original error if the first attempt failed with no retry
            RetryError if every retry failed
            RequestAbortedError if the caller aborted
        """
        if _is_disabled(self.disabled):
            return await self.model.generate(options)

        start_model = self.sticky.acquire()
        execution = await self.engine.execute(start_model, options, _generate)
        self.sticky.record(start_model, execution.model)
        return execution.result

    async def stream(self, options: GenerateOptions) -> AsyncIterator[StreamPart]:
        """
        Stream with retries.

        Failures before the first content part are retried; afterwards
        they end the stream with an error part.
        """
        if _is_disabled(self.disabled):
            return await self.model.stream(options)

        start_model = self.sticky.acquire()
        return await stream_with_retry(
            self.engine,
            start_model,
            options,
            on_complete=lambda final_model: self.sticky.record(start_model, final_model),
        )


class RetryableEmbeddingModel(_RetryableBase):
    """Embedding model wrapper. Only errors trigger retries."""

    async def embed(self, options: EmbedOptions) -> EmbedResult:
        if _is_disabled(self.disabled):
            return await self.model.embed(options)

        start_model = self.sticky.acquire()
        execution = await self.engine.execute(
            start_model, options, _embed, evaluate_results=False
        )
        self.sticky.record(start_model, execution.model)
        return execution.result


class RetryableImageModel(_RetryableBase):
    """
    Image model wrapper. Only errors trigger retries.

    An answer without images is raised as NoImageGeneratedError, so
    no_image_generated (or any error rule) can fall back.
    """

    @property
    def max_images_per_call(self) -> Optional[int]:
        return getattr(self.model, "max_images_per_call", None)

    async def generate_images(self, options: ImageOptions) -> ImageResult:
        if _is_disabled(self.disabled):
            return await self.model.generate_images(options)

        start_model = self.sticky.acquire()
        execution = await self.engine.execute(
            start_model, options, _generate_images, evaluate_results=False
        )
        self.sticky.record(start_model, execution.model)
        return execution.result


def create_retryable(
    *,
    model: Any,
    retries: Sequence[RetryItem],
    disabled: Disabled = None,
    reset: Optional[str] = None,
    on_error: Optional[Hook] = None,
    on_retry: Optional[Hook] = None,
    resolve_model: Optional[ModelResolver] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Union[RetryableLanguageModel, RetryableEmbeddingModel, RetryableImageModel]:
    """
    Wrap `model` with a retries list.

    Args:
        model: Primary model (or reference string, with resolve_model)
        retries: Fallback models, Retry descriptors and rule callables
        disabled: Bool or zero-arg callable; when true, calls go straight
            to the primary model
        reset: Sticky reset policy (default: settings.RETRY_RESET)
        on_error: Called with the context of every failed attempt
        on_retry: Called before every retry
        resolve_model: Resolver for model reference strings
        clock: Monotonic clock for time-based reset policies

    Returns:
        RetryableImageModel for image models, RetryableEmbeddingModel for
        embedding-only models, RetryableLanguageModel otherwise

    Raises:
        InvalidResetError: Unparseable reset policy
        TypeError: Unsupported item in retries
    """
    primary = resolve_model_ref(model, resolve_model)
    generates_text = callable(getattr(primary, "generate", None))
    if supports_image_generation(primary) and not generates_text:
        cls = RetryableImageModel
    elif supports_embedding(primary) and not generates_text:
        cls = RetryableEmbeddingModel
    else:
        cls = RetryableLanguageModel

    return cls(
        primary,
        retries,
        disabled=disabled,
        reset=reset,
        on_error=on_error,
        on_retry=on_retry,
        resolve_model=resolve_model,
        clock=clock,
    )
