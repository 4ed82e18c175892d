"""
Next-model resolution.

Given the entries of a retries list and the context of the attempt that just
finished, decide which model (if any) to invoke next.
"""

import dataclasses
from typing import Any, Callable, Optional, Sequence

import structlog

from retryable_llm.llm.base_model import is_model, model_key
from retryable_llm.retry.attempts import RetryContext, is_result_attempt
from retryable_llm.retry.strategies import EntryKind, Retry, RetryEntry

logger = structlog.get_logger(__name__)

ModelResolver = Callable[[str], Any]


def resolve_model(model: Any, resolver: Optional[ModelResolver] = None) -> Any:
    """
    Turn a model reference into a model instance.

    Model instances are returned unchanged; strings go through `resolver`.

    Raises:
        ValueError: A string reference with no resolver, or a resolver
            that did not return a model
    """
    if is_model(model):
        return model
    if isinstance(model, str):
        if resolver is None:
            raise ValueError(
                f"Cannot resolve model reference '{model}': no resolve_model configured"
            )
        resolved = resolver(model)
        if not is_model(resolved):
            raise ValueError(f"resolve_model('{model}') did not return a model")
        return resolved
    raise ValueError(f"Not a model: {model!r}")


async def find_retry_model(
    entries: Sequence[RetryEntry],
    context: RetryContext,
    resolver: Optional[ModelResolver] = None,
) -> Optional[Retry]:
    """
    Find the next model to try.

    Result attempts (successful but possibly unwanted) are only offered to
    rule entries; a bare model or static descriptor means "retry on error"
    and never applies to a successful result. Error attempts are offered
    to every entry.

    Entries are evaluated in order. The first candidate whose model has
    been attempted fewer than max_attempts times in this request wins;
    exhausted candidates are skipped so later entries still get a chance.

    Returns:
        The accepted Retry with its model resolved, or None
    """
    if is_result_attempt(context.current):
        applicable = [e for e in entries if e.kind is EntryKind.RULE]
    else:
        applicable = list(entries)

    for entry in applicable:
        candidate = await entry.propose(context)
        if candidate is None:
            continue

        model = resolve_model(candidate.model, resolver)
        key = model_key(model)
        used = sum(1 for a in context.attempts if model_key(a.model) == key)

        if used < candidate.attempt_limit:
            logger.debug(
                "Retry candidate accepted",
                entry=repr(entry),
                model=key,
                used_attempts=used,
                max_attempts=candidate.attempt_limit,
            )
            if model is candidate.model:
                return candidate
            return dataclasses.replace(candidate, model=model)

        logger.debug(
            "Retry candidate exhausted, trying next entry",
            model=key,
            used_attempts=used,
            max_attempts=candidate.attempt_limit,
        )

    return None
