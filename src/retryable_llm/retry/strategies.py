"""
Retry descriptors and the entries of a retries list.

A retries list mixes three kinds of items:

    1. Plain models (or model reference strings): "on any error, try this
       model once"
    2. Static Retry descriptors: the same, with explicit max_attempts,
       delay, timeout and option overrides
    3. Rule callables: inspect the RetryContext and return a Retry (or
       None), possibly asynchronously

The list is normalised once into RetryEntry variants so the resolver
evaluates them through one interface instead of re-inspecting types.
"""

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence, Union

from retryable_llm.llm.base_model import is_model
from retryable_llm.retry.attempts import RetryContext


@dataclass(frozen=True)
class Retry:
    """
    A retry decision: which model to use next and how.

    Attributes:
        model: Model instance (or reference string) to invoke next
        max_attempts: Invocations allowed against this model's identity
            within one request (None means 1)
        delay_ms: Base delay before the retry, in milliseconds
        backoff_factor: Exponential factor applied per prior attempt on
            the same model (values below 1 are treated as 1)
        timeout_ms: Timeout for the retried call; gets a fresh abort signal
        options: Per-field overrides of the call options (e.g. prompt,
            temperature, headers)
        provider_options: Replacement provider options for the retried call
    """

    model: Any
    max_attempts: Optional[int] = None
    delay_ms: Optional[float] = None
    backoff_factor: Optional[float] = None
    timeout_ms: Optional[float] = None
    options: Optional[Mapping[str, Any]] = None
    provider_options: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        """Validate descriptor invariants."""
        if self.model is None:
            raise ValueError("Retry.model is required")

        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        if self.delay_ms is not None and self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")

        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")

    @property
    def attempt_limit(self) -> int:
        return self.max_attempts if self.max_attempts is not None else 1


RetryRule = Callable[[RetryContext], Union[Optional[Retry], Awaitable[Optional[Retry]]]]
RetryItem = Union[RetryRule, Retry, Any]


class EntryKind(str, Enum):
    RULE = "rule"
    STATIC = "static"
    MODEL = "model"


class RetryEntry(Protocol):
    """
    One normalised item of a retries list.

    propose() returns the entry's candidate descriptor for the given
    context; the resolver then checks it against the attempt budget.
    """

    kind: EntryKind

    async def propose(self, context: RetryContext) -> Optional[Retry]:
        ...


class RuleEntry:
    """Rule callable; the only kind eligible for result-triggered retries."""

    kind = EntryKind.RULE

    def __init__(self, rule: RetryRule):
        self.rule = rule

    async def propose(self, context: RetryContext) -> Optional[Retry]:
        retry = self.rule(context)
        if inspect.isawaitable(retry):
            retry = await retry
        return retry

    def __repr__(self) -> str:
        return f"RuleEntry({getattr(self.rule, '__name__', self.rule)!r})"


class StaticRetryEntry:
    """Static Retry descriptor, returned as-is for every error."""

    kind = EntryKind.STATIC

    def __init__(self, retry: Retry):
        self.retry = retry

    async def propose(self, context: RetryContext) -> Optional[Retry]:
        return self.retry

    def __repr__(self) -> str:
        return f"StaticRetryEntry({self.retry!r})"


class ModelEntry:
    """Plain model: shorthand for Retry(model, max_attempts=1)."""

    kind = EntryKind.MODEL

    def __init__(self, model: Any):
        self.retry = Retry(model=model, max_attempts=1)

    async def propose(self, context: RetryContext) -> Optional[Retry]:
        return self.retry

    def __repr__(self) -> str:
        return f"ModelEntry({self.retry.model!r})"


def build_entries(retries: Sequence[RetryItem]) -> list[RetryEntry]:
    """
    Normalise a retries list into entries, preserving order.

    Raises:
        TypeError: If an item is neither a model, a Retry nor a callable
    """
    entries: list[RetryEntry] = []
    for item in retries:
        if isinstance(item, Retry):
            entries.append(StaticRetryEntry(item))
        elif is_model(item) or isinstance(item, str):
            entries.append(ModelEntry(item))
        elif callable(item):
            entries.append(RuleEntry(item))
        else:
            raise TypeError(
                f"Unsupported retries item {item!r}: expected a model, "
                f"a Retry or a rule callable"
            )
    return entries
