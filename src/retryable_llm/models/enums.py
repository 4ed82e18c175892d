"""
Enumerations for model boundary payloads.
"""

from enum import Enum


class FinishReason(str, Enum):
    """
    Why a generation stopped.

    CONTENT_FILTER, ERROR, OTHER and UNKNOWN are the usual candidates for
    result-triggered retries (see retry.rules.finish_reason).
    """

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


class StreamPartType(str, Enum):
    """Event types emitted by a streaming call."""

    STREAM_START = "stream-start"
    RESPONSE_METADATA = "response-metadata"
    TEXT_START = "text-start"
    TEXT_DELTA = "text-delta"
    TEXT_END = "text-end"
    REASONING_DELTA = "reasoning-delta"
    SOURCE = "source"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    TOOL_INPUT_START = "tool-input-start"
    TOOL_INPUT_DELTA = "tool-input-delta"
    RAW = "raw"
    FINISH = "finish"
    ERROR = "error"


# Parts carrying user-visible payload. Once one of these has been forwarded
# a stream failure can no longer be retried.
CONTENT_PART_TYPES = frozenset({
    StreamPartType.TEXT_DELTA,
    StreamPartType.REASONING_DELTA,
    StreamPartType.SOURCE,
    StreamPartType.TOOL_CALL,
    StreamPartType.TOOL_RESULT,
    StreamPartType.TOOL_INPUT_START,
    StreamPartType.TOOL_INPUT_DELTA,
    StreamPartType.RAW,
})
