"""
Pydantic data models exchanged with wrapped models.

Includes:
- Enums (FinishReason, StreamPartType)
- Call options (GenerateOptions, EmbedOptions, ImageOptions)
- Results (GenerateResult, StreamPart, EmbedResult, ImageResult, Usage)
"""

from retryable_llm.models.enums import CONTENT_PART_TYPES, FinishReason, StreamPartType
from retryable_llm.models.llm_models import (
    EmbedOptions,
    EmbedResult,
    GenerateOptions,
    GenerateResult,
    ImageOptions,
    ImageResult,
    StreamPart,
    Usage,
)

__all__ = [
    # Enums
    "FinishReason",
    "StreamPartType",
    "CONTENT_PART_TYPES",
    # Options
    "GenerateOptions",
    "EmbedOptions",
    "ImageOptions",
    # Results
    "GenerateResult",
    "StreamPart",
    "EmbedResult",
    "ImageResult",
    "Usage",
]
