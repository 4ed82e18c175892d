"""
Delay/backoff scheduling between attempts.
"""

import asyncio
from typing import Optional

import structlog

from retryable_llm.abort import AbortSignal, run_with_signal
from retryable_llm.exceptions import RequestTimeoutError

logger = structlog.get_logger(__name__)


def calculate_exponential_backoff(
    base_delay_ms: float, backoff_factor: Optional[float], attempts: int
) -> float:
    """
    Delay before the next attempt: base_delay_ms * factor ** attempts.

    `attempts` is the number of prior attempts against the target model, so
    with delay 1000 and factor 2 the first call to a fresh model waits 1s,
    a second retry of the same model 2s, a third 4s. Factors below 1 are
    treated as 1.
    """
    factor = max(backoff_factor or 1, 1)
    return base_delay_ms * factor ** attempts


async def wait_before_retry(
    delay_ms: float, signal: Optional[AbortSignal] = None, ignore_timeout: bool = False
) -> None:
    """
    Suspend for delay_ms, returning early with the signal's reason if the
    signal fires first.

    With ignore_timeout, only a manual abort cuts the delay short; if the
    signal times out the rest of the delay is still waited.
    """
    if delay_ms <= 0:
        return
    logger.info("Applying retry delay", delay_ms=delay_ms)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + delay_ms / 1000.0
    try:
        await run_with_signal(asyncio.sleep(delay_ms / 1000.0), signal)
    except RequestTimeoutError:
        if not ignore_timeout:
            raise
        await asyncio.sleep(max(deadline - loop.time(), 0))
