"""
Unit tests for abort signals, per-retry timeouts and caller cancellation.
"""

import asyncio

import pytest

from fakes import FakeModel, collect, create_result
from retryable_llm.abort import AbortSignal, prepare_abort_signal, run_with_signal
from retryable_llm.exceptions import ModelCallError, RequestAbortedError, RequestTimeoutError
from retryable_llm.models.llm_models import GenerateOptions, StreamPart
from retryable_llm.retry.rules import request_timeout
from retryable_llm.retry.strategies import Retry
from retryable_llm.retryable_model import create_retryable


async def hang(options):
    await asyncio.sleep(60)


# ============================================================================
# AbortSignal
# ============================================================================


@pytest.mark.asyncio
async def test_timeout_signal_aborts_with_timeout_error():
    signal = AbortSignal.timeout(10)

    with pytest.raises(RequestTimeoutError):
        await run_with_signal(asyncio.sleep(5), signal)

    assert signal.aborted
    assert isinstance(signal.reason, TimeoutError)


@pytest.mark.asyncio
async def test_guard_returns_result_when_not_aborted():
    signal = AbortSignal()

    async def answer():
        return 42

    assert await run_with_signal(answer(), signal) == 42
    assert not signal.aborted


@pytest.mark.asyncio
async def test_manual_abort_reason():
    """Test abort() defaults to RequestAbortedError and ignores repeat calls."""
    signal = AbortSignal()
    signal.abort()
    first_reason = signal.reason
    signal.abort(RuntimeError("later"))

    assert isinstance(first_reason, RequestAbortedError)
    assert signal.reason is first_reason
    with pytest.raises(RequestAbortedError):
        signal.throw_if_aborted()


@pytest.mark.asyncio
async def test_prepare_abort_signal():
    """Test only retries with timeout_ms get a fresh signal."""
    caller = AbortSignal()
    model = FakeModel("fallback")

    assert prepare_abort_signal(caller) is caller
    assert prepare_abort_signal(caller, Retry(model=model)) is caller

    fresh = prepare_abort_signal(caller, Retry(model=model, timeout_ms=1000))
    assert fresh is not caller
    assert not fresh.aborted
    fresh.abort()


@pytest.mark.asyncio
async def test_timeout_signal_follows_manual_abort_of_parent():
    caller = AbortSignal()
    fresh = AbortSignal.timeout(5000, parent=caller)

    caller.abort()

    assert fresh.aborted
    assert isinstance(fresh.reason, RequestAbortedError)


@pytest.mark.asyncio
async def test_timeout_signal_ignores_parent_timeout():
    """Test the parent's own timeout does not end the fresh signal."""
    caller = AbortSignal.timeout(10)
    fresh = AbortSignal.timeout(5000, parent=caller)

    await asyncio.sleep(0.05)

    assert caller.aborted
    assert not fresh.aborted
    fresh.close()


@pytest.mark.asyncio
async def test_close_stops_timer_and_parent_link():
    caller = AbortSignal()
    fresh = AbortSignal.timeout(10, parent=caller)

    fresh.close()
    await asyncio.sleep(0.05)
    caller.abort()

    assert not fresh.aborted


# ============================================================================
# Orchestrator Integration
# ============================================================================


@pytest.mark.asyncio
async def test_timeout_falls_back_with_fresh_signal():
    """Test a timed-out primary falls back and the retry gets its own signal."""
    caller_signal = AbortSignal.timeout(20)
    primary = FakeModel("primary")
    primary.generate.side_effect = hang
    fallback = FakeModel("fallback", generate=[create_result("in time")])

    model = create_retryable(model=primary, retries=[request_timeout(fallback, timeout_ms=5000)])
    result = await model.generate(GenerateOptions(prompt="hi", abort_signal=caller_signal))

    assert result.text == "in time"
    fallback_signal = fallback.generate.await_args.args[0].abort_signal
    assert caller_signal.aborted
    assert fallback_signal is not caller_signal
    assert not fallback_signal.aborted
    fallback_signal.abort()


@pytest.mark.asyncio
async def test_caller_abort_is_not_retried():
    """Test a manual abort propagates without consulting rules or hooks."""
    caller_signal = AbortSignal()
    primary = FakeModel("primary")
    fallback = FakeModel("fallback", generate=[create_result()])
    errors = []

    async def abort_midway(options):
        asyncio.get_running_loop().call_soon(caller_signal.abort)
        await asyncio.sleep(60)

    primary.generate.side_effect = abort_midway

    model = create_retryable(model=primary, retries=[fallback], on_error=errors.append)

    with pytest.raises(RequestAbortedError):
        await model.generate(GenerateOptions(prompt="hi", abort_signal=caller_signal))

    assert errors == []
    assert fallback.generate.await_count == 0


@pytest.mark.asyncio
async def test_caller_abort_stops_retries_with_own_timeouts():
    """Test a caller abort ends the loop even though retries run on fresh signals."""
    caller_signal = AbortSignal()
    primary = FakeModel("primary", generate=[RequestTimeoutError("timed out")])
    fallback = FakeModel("fallback")
    second = FakeModel("second", generate=[create_result("second answered")])
    errors = []

    async def abort_then_fail(options):
        caller_signal.abort()
        raise ModelCallError("fallback failed", status_code=500)

    fallback.generate.side_effect = abort_then_fail

    model = create_retryable(
        model=primary,
        retries=[
            Retry(model=fallback, timeout_ms=5000),
            Retry(model=second, timeout_ms=5000, delay_ms=10),
        ],
        on_error=errors.append,
    )

    with pytest.raises(RequestAbortedError):
        await model.generate(GenerateOptions(prompt="hi", abort_signal=caller_signal))

    assert second.generate.await_count == 0
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_caller_abort_interrupts_attempt_with_own_timeout():
    caller_signal = AbortSignal()
    primary = FakeModel("primary", generate=[RequestTimeoutError("timed out")])
    fallback = FakeModel("fallback")

    async def abort_midway(options):
        asyncio.get_running_loop().call_soon(caller_signal.abort)
        await asyncio.sleep(60)

    fallback.generate.side_effect = abort_midway

    model = create_retryable(model=primary, retries=[Retry(model=fallback, timeout_ms=30_000)])

    with pytest.raises(RequestAbortedError):
        await asyncio.wait_for(
            model.generate(GenerateOptions(prompt="hi", abort_signal=caller_signal)), 1
        )


@pytest.mark.asyncio
async def test_caller_abort_cuts_delay_of_timed_retry():
    caller_signal = AbortSignal()
    primary = FakeModel("primary", generate=[ModelCallError("busy", status_code=503)])
    fallback = FakeModel("fallback", generate=[create_result()])

    model = create_retryable(
        model=primary,
        retries=[Retry(model=fallback, timeout_ms=5000, delay_ms=5000)],
        on_retry=lambda context: asyncio.get_running_loop().call_soon(caller_signal.abort),
    )

    with pytest.raises(RequestAbortedError):
        await asyncio.wait_for(
            model.generate(GenerateOptions(prompt="hi", abort_signal=caller_signal)), 1
        )

    assert fallback.generate.await_count == 0


@pytest.mark.asyncio
async def test_caller_timeout_does_not_cut_delay_of_timed_retry():
    """Test a timed retry still waits its delay and runs after the caller timed out."""
    caller_signal = AbortSignal.timeout(10)
    primary = FakeModel("primary")
    primary.generate.side_effect = hang
    fallback = FakeModel("fallback", generate=[create_result("after delay")])

    model = create_retryable(
        model=primary,
        retries=[request_timeout(fallback, timeout_ms=5000, delay_ms=30)],
    )
    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await model.generate(GenerateOptions(prompt="hi", abort_signal=caller_signal))

    assert result.text == "after delay"
    assert loop.time() - started >= 0.03


@pytest.mark.asyncio
async def test_attempt_timeout_signal_is_closed_after_success():
    primary = FakeModel("primary", generate=[RequestTimeoutError("timed out")])
    fallback = FakeModel("fallback", generate=[create_result()])

    model = create_retryable(model=primary, retries=[request_timeout(fallback, timeout_ms=20)])
    await model.generate(GenerateOptions(prompt="hi"))
    fallback_signal = fallback.generate.await_args.args[0].abort_signal

    await asyncio.sleep(0.05)

    assert not fallback_signal.aborted


@pytest.mark.asyncio
async def test_caller_abort_stops_stream_retry():
    caller_signal = AbortSignal()
    fallback = FakeModel("fallback")

    async def abort_then_error():
        caller_signal.abort()
        yield StreamPart.error_part(ModelCallError("overloaded", status_code=529))

    primary = FakeModel("primary", stream=[abort_then_error()])
    model = create_retryable(model=primary, retries=[fallback])

    stream = await model.stream(GenerateOptions(prompt="hi", abort_signal=caller_signal))

    with pytest.raises(RequestAbortedError):
        await collect(stream)

    assert fallback.stream.await_count == 0
