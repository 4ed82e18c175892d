"""
Built-in retry rules.

Each factory returns a rule callable for a retries list. Keyword options
(max_attempts, delay_ms, backoff_factor, timeout_ms, options,
provider_options) are copied onto the Retry the rule returns.

Example:
    create_retryable(
        model=primary,
        retries=[
            service_overloaded(fallback),
            request_timeout(fallback, timeout_ms=30_000),
            retry_after_delay(delay_ms=1000, max_attempts=3, backoff_factor=2),
        ],
    )
"""

import json
from typing import Any, Iterable, Optional

from jsonschema import Draft7Validator

from retryable_llm.config import settings
from retryable_llm.exceptions import (
    ModelCallError,
    NoImageGeneratedError,
    RequestTimeoutError,
)
from retryable_llm.models.enums import FinishReason
from retryable_llm.retry.attempts import RetryContext, is_error_attempt, is_result_attempt
from retryable_llm.retry.headers import parse_retry_headers
from retryable_llm.retry.strategies import Retry, RetryRule


def _named(rule: RetryRule, name: str) -> RetryRule:
    rule.__name__ = name
    return rule


def _status_code(error: Any) -> Optional[int]:
    return getattr(error, "status_code", None)


def service_overloaded(model: Any, **options: Any) -> RetryRule:
    """
    Fall back when the provider reports it is overloaded.

    Matches status 529, an error (or error payload) of type
    "overloaded_error", or a message containing "overloaded".
    """
    def rule(context: RetryContext) -> Optional[Retry]:
        if not is_error_attempt(context.current):
            return None
        error = context.current.error

        data = getattr(error, "data", None)
        error_type = getattr(error, "type", None)
        if error_type is None and isinstance(data, dict):
            inner = data.get("error")
            error_type = data.get("type") or (inner.get("type") if isinstance(inner, dict) else None)

        if (
            _status_code(error) == 529
            or error_type == "overloaded_error"
            or "overloaded" in str(error).lower()
        ):
            return Retry(model=model, **options)
        return None

    return _named(rule, "service_overloaded")


def service_unavailable(model: Any, **options: Any) -> RetryRule:
    """Fall back on HTTP 503."""
    return _named(status_code(model, [503], **options), "service_unavailable")


def status_code(model: Any, codes: Iterable[int], **options: Any) -> RetryRule:
    """
    Fall back on specific HTTP status codes.

    Useful for provider specific codes, e.g. Groq's 498 (flex tier
    capacity exceeded).
    """
    codes = frozenset(codes)

    def rule(context: RetryContext) -> Optional[Retry]:
        if is_error_attempt(context.current) and _status_code(context.current.error) in codes:
            return Retry(model=model, **options)
        return None

    return _named(rule, f"status_code({sorted(codes)})")


def content_filter_triggered(model: Any, **options: Any) -> RetryRule:
    """
    Fall back when the provider's content filter blocked the request.

    Matches an error whose payload has error.code == "content_filter", or a
    result that finished with FinishReason.CONTENT_FILTER.
    """
    def rule(context: RetryContext) -> Optional[Retry]:
        current = context.current

        if is_error_attempt(current):
            data = getattr(current.error, "data", None)
            inner = data.get("error") if isinstance(data, dict) else None
            if isinstance(inner, dict) and inner.get("code") == "content_filter":
                return Retry(model=model, **options)

        if is_result_attempt(current):
            if getattr(current.result, "finish_reason", None) == FinishReason.CONTENT_FILTER:
                return Retry(model=model, **options)

        return None

    return _named(rule, "content_filter_triggered")


def finish_reason(model: Any, reasons: Iterable[FinishReason], **options: Any) -> RetryRule:
    """Fall back when a result finished with one of `reasons`."""
    reasons = frozenset(FinishReason(r) for r in reasons)

    def rule(context: RetryContext) -> Optional[Retry]:
        if is_result_attempt(context.current):
            if getattr(context.current.result, "finish_reason", None) in reasons:
                return Retry(model=model, **options)
        return None

    return _named(rule, "finish_reason")


def request_timeout(model: Any, timeout_ms: Optional[float] = None, **options: Any) -> RetryRule:
    """
    Fall back after a timeout, giving the retry a fresh timeout.

    Args:
        model: Model to fall back to
        timeout_ms: Timeout for the retried call
            (default: settings.RETRY_TIMEOUT_MS)
    """
    timeout_ms = timeout_ms if timeout_ms is not None else settings.RETRY_TIMEOUT_MS

    def rule(context: RetryContext) -> Optional[Retry]:
        if is_error_attempt(context.current) and isinstance(
            context.current.error, (RequestTimeoutError, TimeoutError)
        ):
            return Retry(model=model, timeout_ms=timeout_ms, **options)
        return None

    return _named(rule, "request_timeout")


def request_not_retryable(model: Any, **options: Any) -> RetryRule:
    """Fall back when the adapter marked the error as not retryable."""
    def rule(context: RetryContext) -> Optional[Retry]:
        if not is_error_attempt(context.current):
            return None
        error = context.current.error
        if isinstance(error, ModelCallError) and error.is_retryable is False:
            return Retry(model=model, **options)
        return None

    return _named(rule, "request_not_retryable")


def no_image_generated(model: Any, **options: Any) -> RetryRule:
    """
    Fall back when an image model produced no image.

    Retries once unless max_attempts is given.
    """
    options.setdefault("max_attempts", 1)

    def rule(context: RetryContext) -> Optional[Retry]:
        if is_error_attempt(context.current) and isinstance(
            context.current.error, NoImageGeneratedError
        ):
            return Retry(model=model, **options)
        return None

    return _named(rule, "no_image_generated")


def retry_after_delay(
    model: Any = None,
    *,
    delay_ms: float,
    max_attempts: Optional[int] = None,
    backoff_factor: Optional[float] = None,
) -> RetryRule:
    """
    Retry a retryable error after a delay.

    The delay comes from the error's retry-after-ms / retry-after headers
    (capped at settings.MAX_RETRY_AFTER_MS) or falls back to `delay_ms`.
    Without `model` the failing model is retried.

    Raises:
        ValueError: delay_ms is missing or not positive
    """
    if not delay_ms or delay_ms <= 0:
        raise ValueError("retry_after_delay: delay_ms is required")

    def rule(context: RetryContext) -> Optional[Retry]:
        current = context.current
        if not is_error_attempt(current):
            return None
        error = current.error
        if not isinstance(error, ModelCallError) or error.is_retryable is not True:
            return None

        header_delay = parse_retry_headers(error.response_headers)
        if header_delay is not None:
            delay = min(header_delay, settings.MAX_RETRY_AFTER_MS)
        else:
            delay = delay_ms

        return Retry(
            model=model if model is not None else current.model,
            delay_ms=delay,
            max_attempts=max_attempts,
            backoff_factor=backoff_factor,
        )

    return _named(rule, "retry_after_delay")


def _response_schema(response_format: Any) -> Optional[dict]:
    if not isinstance(response_format, dict) or not response_format:
        return None
    # Ollama style wrappers nest the schema under "schema"
    if isinstance(response_format.get("schema"), dict):
        return response_format["schema"]
    return response_format


def schema_mismatch(model: Any, **options: Any) -> RetryRule:
    """
    Fall back when a result does not match the requested JSON schema.

    The schema is taken from the call options' response_format. Results
    whose text is not valid JSON count as a mismatch; empty text and calls
    without a response_format are left alone.
    """
    def rule(context: RetryContext) -> Optional[Retry]:
        current = context.current
        if not is_result_attempt(current):
            return None

        text = getattr(current.result, "text", "")
        schema = _response_schema(getattr(current.options, "response_format", None))
        if not text or schema is None:
            return None

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return Retry(model=model, **options)

        if Draft7Validator(schema).is_valid(payload):
            return None
        return Retry(model=model, **options)

    return _named(rule, "schema_mismatch")
