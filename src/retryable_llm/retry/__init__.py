"""
Retry engine with rule-driven model fallback.

A wrapped model is called with a retries list: fallback models, static
Retry descriptors and rule callables. On every failed attempt (a raised
error, or a result a rule flags) the list is walked in order and the first
model still within its max_attempts budget is tried next.

Main Components:
    - RetryEngine: Attempt loop for generate/embed/image calls and stream setup
    - stream_with_retry: Streaming orchestrator (retries before content only)
    - find_retry_model: Next-model resolution
    - AttemptLedger / RetryContext: Per-request attempt history
    - StickyModelManager: Keeps a winning fallback for following requests
    - rules: Built-in retry rules

Usage:
    >>> from retryable_llm.retry import RetryEngine
    >>> engine = RetryEngine(retries=[fallback_model])
    >>> execution = await engine.execute(primary, options, lambda m, o: m.generate(o))
"""

from retryable_llm.retry.attempts import (
    Attempt,
    AttemptLedger,
    ErrorAttempt,
    ResultAttempt,
    RetryContext,
    is_error_attempt,
    is_result_attempt,
)
from retryable_llm.retry.engine import Execution, RetryEngine
from retryable_llm.retry.reset import ResetPolicy, StickyModelManager
from retryable_llm.retry.resolver import find_retry_model, resolve_model
from retryable_llm.retry.rules import (
    content_filter_triggered,
    finish_reason,
    no_image_generated,
    request_not_retryable,
    request_timeout,
    retry_after_delay,
    schema_mismatch,
    service_overloaded,
    service_unavailable,
    status_code,
)
from retryable_llm.retry.strategies import Retry, RetryRule
from retryable_llm.retry.streaming import stream_with_retry

__all__ = [
    "Attempt",
    "AttemptLedger",
    "ErrorAttempt",
    "ResultAttempt",
    "RetryContext",
    "is_error_attempt",
    "is_result_attempt",
    "Execution",
    "RetryEngine",
    "ResetPolicy",
    "StickyModelManager",
    "find_retry_model",
    "resolve_model",
    "Retry",
    "RetryRule",
    "stream_with_retry",
    # Built-in rules
    "content_filter_triggered",
    "finish_reason",
    "no_image_generated",
    "request_not_retryable",
    "request_timeout",
    "retry_after_delay",
    "schema_mismatch",
    "service_overloaded",
    "service_unavailable",
    "status_code",
]
