"""
Abort signals and the per-attempt timeout manager.

A retry that declares its own timeout gets a brand new signal, so it is not
doomed by a timeout that already fired against the primary model. The new
signal still follows the caller's signal for manual aborts: a cancelled
request stops, whichever attempt it is on. Without a timeout, the caller's
signal is passed through untouched.
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

import structlog

from retryable_llm.exceptions import RequestAbortedError, RequestTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AbortSignal:
    """
    Cancellation signal shared between a caller and an in-flight call.

    The caller (or a timer) calls abort(); anything awaited through guard()
    is cancelled and the signal's reason is raised in its place.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._parent: Optional["AbortSignal"] = None
        self._followers: list["AbortSignal"] = []
        self.reason: Optional[BaseException] = None

    @classmethod
    def timeout(
        cls, timeout_ms: float, parent: Optional["AbortSignal"] = None
    ) -> "AbortSignal":
        """
        Create a signal that aborts itself after timeout_ms milliseconds.

        With a parent, a manual abort of the parent is passed on; the
        parent's own timeout is not. Must be called from a running event loop.
        """
        signal = cls()
        loop = asyncio.get_running_loop()
        signal._timer = loop.call_later(
            timeout_ms / 1000.0,
            signal.abort,
            RequestTimeoutError(f"Request timed out after {timeout_ms}ms"),
        )
        if parent is not None:
            signal._follow(parent)
        return signal

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        """True once aborted for any reason other than a timeout."""
        return self.aborted and not isinstance(self.reason, RequestTimeoutError)

    def _follow(self, parent: "AbortSignal") -> None:
        if parent.aborted:
            if parent.cancelled:
                self.abort(parent.reason)
            return
        self._parent = parent
        parent._followers.append(self)

    def abort(self, reason: Optional[BaseException] = None) -> None:
        """Abort the signal. Subsequent calls are ignored."""
        if self.aborted:
            return
        self.reason = reason or RequestAbortedError("The operation was aborted")
        self._event.set()
        self.close()

        followers, self._followers = self._followers, []
        if self.cancelled:
            for follower in followers:
                follower.abort(self.reason)

    def close(self) -> None:
        """Stop the timer and stop following the parent. Does not abort."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None:
            if self in self._parent._followers:
                self._parent._followers.remove(self)
            self._parent = None

    def throw_if_aborted(self) -> None:
        if self.aborted:
            raise self.reason

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the signal fires first.

        Raises:
            The signal's reason if it fires (or already fired) first
        """
        task = asyncio.ensure_future(awaitable)
        if self.aborted:
            task.cancel()
            raise self.reason

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task.done() and not task.cancelled():
            return task.result()
        raise self.reason

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self.aborted}, reason={self.reason!r})"


def prepare_abort_signal(
    caller_signal: Optional[AbortSignal], retry: Any = None
) -> Optional[AbortSignal]:
    """
    Pick the signal for the next attempt.

    Args:
        caller_signal: Signal from the original call options (may be None)
        retry: Accepted Retry descriptor, or None on the first attempt

    Returns:
        A fresh timeout signal following the caller's manual aborts if the
        retry declares timeout_ms, otherwise the caller's signal unchanged
    """
    timeout_ms = getattr(retry, "timeout_ms", None)
    if timeout_ms:
        logger.debug("Creating fresh timeout signal for retry", timeout_ms=timeout_ms)
        return AbortSignal.timeout(timeout_ms, parent=caller_signal)
    return caller_signal


def release_signal(
    signal: Optional[AbortSignal], caller_signal: Optional[AbortSignal]
) -> None:
    """Close an attempt's own timeout signal; the caller's signal is left alone."""
    if signal is not None and signal is not caller_signal:
        signal.close()


async def run_with_signal(awaitable: Awaitable[T], signal: Optional[AbortSignal]) -> T:
    """Await `awaitable`, racing it against `signal` when one is given."""
    if signal is None:
        return await awaitable
    return await signal.guard(awaitable)
