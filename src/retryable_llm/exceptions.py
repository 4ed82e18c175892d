"""
Exceptions raised by model adapters and by the retry layer.

Model adapters raise ModelCallError (or one of the abort errors) so that
retry rules can inspect status codes, headers and provider payloads without
knowing which backend produced them. The retry layer itself only raises
RetryError on exhaustion and InvalidResetError on bad configuration.
"""

from typing import Any, Optional

# Status codes treated as transient when the adapter does not say otherwise
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


class ModelCallError(Exception):
    """
    Raised when a call to a model provider fails.

    Carries everything a retry rule may want to look at. Retryability is a
    hint from the adapter only; whether a retry actually happens is decided
    by the caller's rules.

    Attributes:
        message: Human readable error message
        status_code: HTTP status code (None for transport errors)
        is_retryable: Adapter hint, derived from status_code when not given
        url: Request URL
        response_headers: Response headers (lower-cased keys)
        response_body: Raw response body text
        data: Parsed error payload from the provider, if any
        details: Extra context for logging
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        is_retryable: Optional[bool] = None,
        url: Optional[str] = None,
        response_headers: Optional[dict[str, str]] = None,
        response_body: Optional[str] = None,
        data: Any = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url
        self.response_headers = {
            k.lower(): v for k, v in (response_headers or {}).items()
        }
        self.response_body = response_body
        self.data = data
        self.details = details or {}

        if is_retryable is None:
            is_retryable = status_code is not None and (
                status_code in RETRYABLE_STATUS_CODES or status_code >= 500
            )
        self.is_retryable = is_retryable

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"status_code={self.status_code}, "
            f"is_retryable={self.is_retryable})"
        )


class NoImageGeneratedError(ModelCallError):
    """Raised when an image model answered without producing any image."""
    pass


class AbortError(Exception):
    """Base class for requests stopped through an AbortSignal."""
    pass


class RequestAbortedError(AbortError):
    """
    Raised when the caller aborted the request.

    Never offered to retry rules: an aborted request stops retrying.
    """
    pass


class RequestTimeoutError(AbortError, TimeoutError):
    """
    Raised when a timeout signal fired before the call completed.

    Unlike a manual abort this is an ordinary failure and goes through
    the retry rules (see request_timeout).
    """
    pass


class RetryError(Exception):
    """
    Raised when no rule yields a next model after at least one retry.

    Attributes:
        reason: Always "exhausted"
        errors: Every error (or flagged result) encountered, in attempt order
        last_error: The failure that ended the request
    """

    reason = "exhausted"

    def __init__(self, message: str, errors: list[Any], last_error: Any):
        super().__init__(message)
        self.message = message
        self.errors = errors
        self.last_error = last_error


class InvalidResetError(ValueError):
    """Raised for an unparseable sticky-model reset policy string."""
    pass
