"""
Retry engine: the attempt loop shared by every retryable call.

State machine for one logical request:

    Invoking -> Succeeded                (result accepted)
    Invoking -> Failed -> Invoking       (a rule yields a next model)
    Invoking -> Failed -> Exhausted      (no rule yields a model)

A failure is either a raised error or a successful result that a rule
flags. Failures are appended to the request's AttemptLedger, reported to
on_error (errors only), and resolved against the retries list. When a next
model is found, on_retry runs, the backoff delay is applied and the next
attempt starts with merged call options and, if the retry declares a
timeout, a fresh abort signal.

Usage:
    engine = RetryEngine(retries=[fallback_model])
    execution = await engine.execute(primary, options, lambda m, o: m.generate(o))
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from retryable_llm.abort import (
    prepare_abort_signal,
    release_signal,
    run_with_signal,
)
from retryable_llm.exceptions import RequestAbortedError, RetryError
from retryable_llm.llm.base_model import model_key
from retryable_llm.monitoring.metrics import (
    model_attempts_total,
    retries_total,
    retry_exhausted_total,
)
from retryable_llm.retry.attempts import (
    AttemptLedger,
    ErrorAttempt,
    ResultAttempt,
    RetryContext,
)
from retryable_llm.retry.backoff import calculate_exponential_backoff, wait_before_retry
from retryable_llm.retry.resolver import ModelResolver, find_retry_model
from retryable_llm.retry.strategies import Retry, RetryItem, build_entries

logger = structlog.get_logger(__name__)

Hook = Callable[[RetryContext], None]
Invoke = Callable[[Any, Any], Awaitable[Any]]


def merge_call_options(options: Any, retry: Optional[Retry]) -> Any:
    """
    Build the call options for an attempt.

    Fields listed in retry.options replace the base value (None leaves it
    untouched); provider options come from retry.options, then
    retry.provider_options, then the base options. The abort signal is
    replaced only when the retry declares a timeout.

    Raises:
        ValueError: retry.options names a field the options type lacks
    """
    update: dict[str, Any] = {}

    if retry is not None:
        overrides = dict(retry.options or {})
        allowed = set(type(options).model_fields) - {"abort_signal"}
        unknown = set(overrides) - allowed
        if unknown:
            raise ValueError(f"Unknown call option overrides: {sorted(unknown)}")

        update.update({k: v for k, v in overrides.items() if v is not None})
        if "provider_options" not in update and retry.provider_options is not None:
            update["provider_options"] = dict(retry.provider_options)

    signal = prepare_abort_signal(options.abort_signal, retry)
    if signal is not options.abort_signal:
        update["abort_signal"] = signal

    return options.model_copy(update=update) if update else options


@dataclass(frozen=True)
class Execution:
    """
    Outcome of a successful execute() call.

    Attributes:
        result: Value returned by the winning invocation
        model: Model that produced it
        options: Call options used for that invocation
    """

    result: Any
    model: Any
    options: Any


class RetryEngine:
    """
    Attempt loop with rule-driven fallback.

    The engine holds only configuration (normalised retries list, hooks,
    model resolver); all per-request state lives in the AttemptLedger
    passed through execute(), so one engine serves concurrent requests.

    Attributes:
        entries: Normalised retries list
        on_error: Called with the context of every failed attempt
        on_retry: Called before every retry, always after on_error
        resolve_model: Resolver for model reference strings
    """

    def __init__(
        self,
        retries: Sequence[RetryItem],
        on_error: Optional[Hook] = None,
        on_retry: Optional[Hook] = None,
        resolve_model: Optional[ModelResolver] = None,
    ):
        self.entries = build_entries(retries)
        self.on_error = on_error
        self.on_retry = on_retry
        self.resolve_model = resolve_model

        logger.debug(
            "RetryEngine initialized",
            entries=[entry.kind.value for entry in self.entries],
        )

    async def execute(
        self,
        start_model: Any,
        options: Any,
        invoke: Invoke,
        *,
        ledger: Optional[AttemptLedger] = None,
        retry: Optional[Retry] = None,
        evaluate_results: bool = True,
        hold_signal: bool = False,
    ) -> Execution:
        """
        Run the attempt loop until a result is accepted.

        Args:
            start_model: Model for the first attempt
            options: Base call options of the request
            invoke: Coroutine function (model, call_options) -> result
            ledger: Ledger to continue (streaming re-opens); new if None
            retry: Descriptor that selected start_model, if any
            evaluate_results: Offer successful results to the rules
            hold_signal: Keep the winning attempt's own timeout signal
                running (streams are still read through it)

        Returns:
            Execution with the accepted result

        Raises:
            The original error if the first attempt failed with no rule
            RetryError if later attempts were exhausted
            RequestAbortedError if the caller aborted
        """
        ledger = ledger if ledger is not None else AttemptLedger()
        model = start_model

        while True:
            self.check_cancelled(options, model)
            call_options = merge_call_options(options, retry)
            held = False

            try:
                result = await run_with_signal(
                    invoke(model, call_options), call_options.abort_signal
                )
            except RequestAbortedError:
                logger.info("Request aborted by caller", model=model_key(model))
                raise
            except Exception as error:
                self.check_cancelled(options, model)
                next_retry = await self.handle_error(error, ledger, model, call_options)
            else:
                if not evaluate_results:
                    model_attempts_total.labels(model=model_key(model), outcome="success").inc()
                    held = hold_signal
                    return Execution(result=result, model=model, options=call_options)

                next_retry = await self.handle_result(result, ledger, model, call_options)
                if next_retry is None:
                    return Execution(result=result, model=model, options=call_options)
            finally:
                if not held:
                    release_signal(call_options.abort_signal, options.abort_signal)

            await self.prepare_retry(next_retry, ledger, options.abort_signal)
            model = next_retry.model
            retry = next_retry

    def check_cancelled(self, options: Any, model: Any) -> None:
        """
        Stop once the caller aborted, even if the last attempt ran on its own
        timeout signal.

        Raises:
            RequestAbortedError (the signal's reason) after a manual abort
        """
        signal = options.abort_signal
        if signal is not None and signal.cancelled:
            logger.info("Request aborted by caller", model=model_key(model))
            raise signal.reason

    async def handle_error(
        self, error: Exception, ledger: AttemptLedger, model: Any, call_options: Any
    ) -> Retry:
        """
        Record a failed attempt and find the next model.

        Raises:
            `error` itself when it was the only attempt and no rule matched
            RetryError when no rule matched after earlier attempts
        """
        attempt = ErrorAttempt(error=error, model=model, options=call_options)
        ledger.append(attempt)
        model_attempts_total.labels(model=model_key(model), outcome="error").inc()

        logger.warning(
            "Model attempt failed",
            model=model_key(model),
            attempt=len(ledger),
            error_type=type(error).__name__,
            error=str(error),
        )

        context = ledger.context()
        if self.on_error is not None:
            self.on_error(context)

        retry = await find_retry_model(self.entries, context, self.resolve_model)
        if retry is not None:
            return retry

        if len(ledger) > 1:
            raise self._exhausted(error, ledger) from error
        raise error

    async def handle_result(
        self, result: Any, ledger: AttemptLedger, model: Any, call_options: Any
    ) -> Optional[Retry]:
        """
        Record a successful attempt and let rules flag it.

        Returns:
            The next Retry if a rule asks to retry this result, else None
        """
        attempt = ResultAttempt(result=result, model=model, options=call_options)
        ledger.append(attempt)

        retry = await find_retry_model(self.entries, ledger.context(), self.resolve_model)
        outcome = "flagged" if retry is not None else "success"
        model_attempts_total.labels(model=model_key(model), outcome=outcome).inc()

        if retry is not None:
            logger.warning(
                "Model result flagged for retry",
                model=model_key(model),
                attempt=len(ledger),
                finish_reason=getattr(getattr(result, "finish_reason", None), "value", None),
            )
        return retry

    async def prepare_retry(
        self, retry: Retry, ledger: AttemptLedger, caller_signal: Any = None
    ) -> None:
        """
        Run on_retry and apply the backoff delay for an accepted retry.

        The delay is cut short by a manual abort of the caller's signal.
        When the retry brings its own timeout, the caller's timeout does not
        cut it short (it may already have fired against the failed attempt).
        """
        previous = ledger.last
        retries_total.labels(
            from_model=model_key(previous.model), to_model=model_key(retry.model)
        ).inc()

        logger.info(
            "Retrying with model",
            from_model=model_key(previous.model),
            to_model=model_key(retry.model),
            attempt=len(ledger) + 1,
            delay_ms=retry.delay_ms,
            timeout_ms=retry.timeout_ms,
        )

        if self.on_retry is not None:
            self.on_retry(RetryContext(
                current=dataclasses.replace(previous, model=retry.model),
                attempts=ledger.snapshot(),
            ))

        if retry.delay_ms:
            delay_ms = calculate_exponential_backoff(
                retry.delay_ms, retry.backoff_factor, ledger.count_for(retry.model)
            )
            await wait_before_retry(
                delay_ms, caller_signal, ignore_timeout=bool(retry.timeout_ms)
            )

    def _exhausted(self, error: Exception, ledger: AttemptLedger) -> RetryError:
        first_model = next(iter(ledger)).model
        retry_exhausted_total.labels(model=model_key(first_model)).inc()

        logger.error(
            "All retries exhausted",
            total_attempts=len(ledger),
            models_tried=list(dict.fromkeys(model_key(a.model) for a in ledger)),
            final_error_type=type(error).__name__,
        )

        return RetryError(
            f"Failed after {len(ledger)} attempts. Last error: {error}",
            errors=ledger.failures(),
            last_error=error,
        )
