"""
Attempt records and the per-request attempt ledger.

Every invocation made while serving one logical request is recorded here,
in order. The ledger drives max_attempts accounting and the aggregate
RetryError on exhaustion. It is created per request and never shared.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Literal, Optional, Union

from retryable_llm.llm.base_model import model_key


@dataclass(frozen=True)
class ErrorAttempt:
    """
    An invocation that raised (or streamed an error before any content).

    Attributes:
        error: The exception raised by the model
        model: Model that was invoked
        options: Call options used for the invocation
    """

    error: Any
    model: Any
    options: Any = None
    kind: Literal["error"] = "error"


@dataclass(frozen=True)
class ResultAttempt:
    """
    An invocation that succeeded, recorded so rules can flag its result.

    Attributes:
        result: The GenerateResult returned by the model
        model: Model that was invoked
        options: Call options used for the invocation
    """

    result: Any
    model: Any
    options: Any = None
    kind: Literal["result"] = "result"


Attempt = Union[ErrorAttempt, ResultAttempt]


def is_error_attempt(attempt: Attempt) -> bool:
    return attempt.kind == "error"


def is_result_attempt(attempt: Attempt) -> bool:
    return attempt.kind == "result"


@dataclass(frozen=True)
class RetryContext:
    """
    Input given to retry rules and to the on_error/on_retry hooks.

    Attributes:
        current: The attempt being evaluated (always attempts[-1] for rules)
        attempts: Every attempt of this request so far, oldest first
    """

    current: Attempt
    attempts: tuple[Attempt, ...]


class AttemptLedger:
    """Append-only, chronologically ordered record of attempts."""

    def __init__(self) -> None:
        self._attempts: list[Attempt] = []

    def append(self, attempt: Attempt) -> None:
        self._attempts.append(attempt)

    def for_key(self, key: str) -> list[Attempt]:
        """Attempts made against the model identity `key`."""
        return [a for a in self._attempts if model_key(a.model) == key]

    def count_for(self, model: Any) -> int:
        return len(self.for_key(model_key(model)))

    @property
    def last(self) -> Optional[Attempt]:
        return self._attempts[-1] if self._attempts else None

    def snapshot(self) -> tuple[Attempt, ...]:
        """Immutable copy handed to rules and hooks."""
        return tuple(self._attempts)

    def context(self) -> RetryContext:
        """Context whose current attempt is the most recent one."""
        return RetryContext(current=self._attempts[-1], attempts=self.snapshot())

    def failures(self) -> list[Any]:
        """Errors and flagged results in order, for RetryError.errors."""
        return [
            a.error if is_error_attempt(a) else a.result
            for a in self._attempts
        ]

    def __len__(self) -> int:
        return len(self._attempts)

    def __iter__(self) -> Iterator[Attempt]:
        return iter(self._attempts)

    def __repr__(self) -> str:
        return f"AttemptLedger(attempts={len(self._attempts)})"
