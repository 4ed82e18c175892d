"""
Streaming orchestration.

A stream is retried only while nothing has been forwarded to the consumer.
Once a content part went out, a failure is passed on as an error part and
the sequence ends: the consumer has already seen partial output, and
splicing another model's answer onto it would corrupt the response.

Setup failures (the model's stream() raising before any part) are handled
by RetryEngine.execute exactly like non-streaming failures and surface
from `await stream_with_retry(...)`.
"""

from typing import Any, AsyncIterator, Callable, Optional

import structlog

from retryable_llm.abort import release_signal, run_with_signal
from retryable_llm.exceptions import ModelCallError, RequestAbortedError
from retryable_llm.llm.base_model import model_key
from retryable_llm.models.llm_models import StreamPart
from retryable_llm.retry.attempts import AttemptLedger
from retryable_llm.retry.engine import Execution, RetryEngine

logger = structlog.get_logger(__name__)

OnComplete = Callable[[Any], None]


async def _open_stream(model: Any, options: Any) -> AsyncIterator[StreamPart]:
    return await model.stream(options)


async def _aclose(upstream: Any) -> None:
    aclose = getattr(upstream, "aclose", None)
    if aclose is not None:
        await aclose()


def _as_exception(error: Any) -> Exception:
    """Error parts may carry arbitrary payloads; rules and RetryError need an exception."""
    if isinstance(error, Exception):
        return error
    return ModelCallError(str(error), data=error)


async def stream_with_retry(
    engine: RetryEngine,
    start_model: Any,
    options: Any,
    on_complete: Optional[OnComplete] = None,
) -> AsyncIterator[StreamPart]:
    """
    Open a stream with retries and return the forwarding iterator.

    Args:
        engine: Engine holding the retries list and hooks
        start_model: Model for the first attempt
        options: Base call options
        on_complete: Called with the final model once the stream finished
            without a terminal error

    Raises:
        Whatever RetryEngine.execute raises for setup failures
    """
    ledger = AttemptLedger()
    execution = await engine.execute(
        start_model, options, _open_stream, ledger=ledger,
        evaluate_results=False, hold_signal=True,
    )
    return _forward(engine, execution, options, ledger, on_complete)


async def _forward(
    engine: RetryEngine,
    execution: Execution,
    options: Any,
    ledger: AttemptLedger,
    on_complete: Optional[OnComplete],
) -> AsyncIterator[StreamPart]:
    upstream = execution.result
    model = execution.model
    call_options = execution.options
    content_started = False

    try:
        while True:
            failure: Optional[Exception] = None

            try:
                part = await run_with_signal(upstream.__anext__(), call_options.abort_signal)
            except StopAsyncIteration:
                break
            except RequestAbortedError:
                raise
            except Exception as exc:
                failure = exc
            else:
                if part.is_error and not content_started:
                    failure = _as_exception(part.error)
                else:
                    content_started = content_started or part.is_content
                    yield part
                    if part.is_error:
                        logger.warning(
                            "Stream failed after content, not retrying",
                            model=model_key(model),
                        )
                        return
                    continue

            if content_started:
                logger.warning(
                    "Stream raised after content, not retrying",
                    model=model_key(model),
                    error_type=type(failure).__name__,
                )
                yield StreamPart.error_part(failure)
                return

            await _aclose(upstream)
            upstream = None
            release_signal(call_options.abort_signal, options.abort_signal)

            terminal: Optional[Exception] = None
            try:
                engine.check_cancelled(options, model)
                next_retry = await engine.handle_error(failure, ledger, model, call_options)
                await engine.prepare_retry(next_retry, ledger, options.abort_signal)
                execution = await engine.execute(
                    next_retry.model,
                    options,
                    _open_stream,
                    ledger=ledger,
                    retry=next_retry,
                    evaluate_results=False,
                    hold_signal=True,
                )
            except RequestAbortedError:
                raise
            except Exception as exc:
                terminal = exc

            if terminal is not None:
                yield StreamPart.error_part(terminal)
                return

            upstream = execution.result
            model = execution.model
            call_options = execution.options

        if on_complete is not None:
            on_complete(model)
    finally:
        if upstream is not None:
            await _aclose(upstream)
        release_signal(call_options.abort_signal, options.abort_signal)
