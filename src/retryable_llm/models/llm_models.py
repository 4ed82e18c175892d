"""
Boundary data models for the model collaborator.

These are the payloads exchanged with any wrapped model: call options going
in, results and stream parts coming out. Provider adapters translate them to
and from their own wire formats; the retry layer only reads the few fields
it needs (finish reason, part type, abort signal).
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from retryable_llm.abort import AbortSignal
from retryable_llm.models.enums import CONTENT_PART_TYPES, FinishReason, StreamPartType


class GenerateOptions(BaseModel):
    """
    Call options for a generate or stream request.

    Every field except abort_signal can be overridden per retry through
    Retry.options (shallow, field by field).
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    prompt: str = Field(..., description="Prompt text sent to the model")
    system: Optional[str] = Field(default=None, description="System prompt")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0, description="Sampling temperature")
    max_output_tokens: Optional[int] = Field(default=None, ge=1, description="Maximum tokens to generate")
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Nucleus sampling parameter")
    top_k: Optional[int] = Field(default=None, ge=1, description="Top-k sampling parameter")
    seed: Optional[int] = Field(default=None, description="Random seed for reproducibility")
    stop_sequences: Optional[list[str]] = Field(default=None, description="Stop sequences for generation")
    presence_penalty: Optional[float] = Field(default=None)
    frequency_penalty: Optional[float] = Field(default=None)
    response_format: Optional[Dict[str, Any]] = Field(
        default=None,
        description="JSON Schema the response is expected to follow"
    )
    provider_options: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Provider-specific options, passed through untouched"
    )
    headers: Optional[Dict[str, str]] = Field(default=None, description="Extra request headers")
    abort_signal: Optional[AbortSignal] = Field(default=None, exclude=True)


class EmbedOptions(BaseModel):
    """Call options for an embedding request."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    values: list[str] = Field(..., min_length=1, description="Texts to embed")
    provider_options: Optional[Dict[str, Any]] = Field(default=None)
    headers: Optional[Dict[str, str]] = Field(default=None)
    abort_signal: Optional[AbortSignal] = Field(default=None, exclude=True)


class ImageOptions(BaseModel):
    """
    Call options for an image generation request.

    n, size, aspect_ratio, seed and headers can be overridden per retry,
    e.g. a fallback model that only supports a different size.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    prompt: str = Field(..., description="Description of the image to generate")
    n: int = Field(default=1, ge=1, description="Number of images to generate")
    size: Optional[str] = Field(default=None, description="Image size as \"{width}x{height}\"")
    aspect_ratio: Optional[str] = Field(default=None, description="Aspect ratio as \"{width}:{height}\"")
    seed: Optional[int] = Field(default=None, description="Random seed for reproducibility")
    provider_options: Optional[Dict[str, Any]] = Field(default=None)
    headers: Optional[Dict[str, str]] = Field(default=None)
    abort_signal: Optional[AbortSignal] = Field(default=None, exclude=True)


class Usage(BaseModel):
    """Token usage reported by the provider."""
    model_config = ConfigDict(frozen=True)

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class GenerateResult(BaseModel):
    """Result of a non-streaming generate call."""
    model_config = ConfigDict(frozen=True)

    text: str = Field(default="", description="Generated text")
    finish_reason: FinishReason = Field(..., description="Why generation stopped")
    usage: Optional[Usage] = None
    model_id: Optional[str] = Field(default=None, description="Model that actually answered")
    response_headers: Dict[str, str] = Field(default_factory=dict)
    raw_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Provider-specific metadata (for debugging)"
    )


class StreamPart(BaseModel):
    """
    One event of a streamed response.

    `delta` is set for *-delta parts, `error` for error parts,
    `finish_reason`/`usage` for the finish part.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: StreamPartType
    delta: Optional[str] = None
    error: Any = None
    finish_reason: Optional[FinishReason] = None
    usage: Optional[Usage] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_content(self) -> bool:
        return self.type in CONTENT_PART_TYPES

    @property
    def is_error(self) -> bool:
        return self.type is StreamPartType.ERROR

    @classmethod
    def error_part(cls, error: Any) -> "StreamPart":
        return cls(type=StreamPartType.ERROR, error=error)


class EmbedResult(BaseModel):
    """Result of an embedding call."""
    model_config = ConfigDict(frozen=True)

    embeddings: list[list[float]]
    usage: Optional[Usage] = None
    raw_metadata: Dict[str, Any] = Field(default_factory=dict)


class ImageResult(BaseModel):
    """Result of an image generation call. Images are base64 encoded."""
    model_config = ConfigDict(frozen=True)

    images: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    response_headers: Dict[str, str] = Field(default_factory=dict)
    raw_metadata: Dict[str, Any] = Field(default_factory=dict)
