"""
Sticky model management.

After a request needed a retry to succeed, the winning model can stay in
use for following requests instead of probing the primary every time.
How long it stays is the reset policy:

    after-request      revert to the primary for the next request (default)
    after-N-requests   use the winner for the next N requests
    after-N-seconds    use the winner until N seconds have passed
"""

import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Literal, Optional

import structlog

from retryable_llm.exceptions import InvalidResetError
from retryable_llm.llm.base_model import model_key

logger = structlog.get_logger(__name__)

_REQUESTS_PATTERN = re.compile(r"^after-(\d+)-requests$")
_SECONDS_PATTERN = re.compile(r"^after-(\d+)-seconds$")


@dataclass(frozen=True)
class ResetPolicy:
    """Parsed reset policy. "after-request" is requests with count 0."""

    type: Literal["requests", "seconds"]
    count: int

    @classmethod
    def parse(cls, reset: str) -> "ResetPolicy":
        """
        Parse a reset string.

        >>> ResetPolicy.parse("after-5-requests")
        ResetPolicy(type='requests', count=5)

        Raises:
            InvalidResetError: The string matches none of the policies
        """
        if reset == "after-request":
            return cls(type="requests", count=0)

        match = _REQUESTS_PATTERN.match(reset)
        if match:
            return cls(type="requests", count=int(match.group(1)))

        match = _SECONDS_PATTERN.match(reset)
        if match:
            return cls(type="seconds", count=int(match.group(1)))

        raise InvalidResetError(f"Invalid reset option: {reset}")


@dataclass
class StickyState:
    """
    The model currently promoted over the primary.

    Attributes:
        model: The winning fallback model
        set_at: time.monotonic() when it was promoted
        requests_remaining: Requests left before reverting (requests policy)
    """

    model: Any
    set_at: float
    requests_remaining: int


class StickyModelManager:
    """
    Owns the sticky state shared by all requests of one wrapper.

    acquire() and record() are each a single locked read-decide-write step,
    so concurrent requests cannot corrupt the countdown or expiry window.
    """

    def __init__(self, primary: Any, reset: str = "after-request", clock=time.monotonic):
        self.primary = primary
        self.policy = ResetPolicy.parse(reset)
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[StickyState] = None

    @property
    def state(self) -> Optional[StickyState]:
        return self._state

    def acquire(self) -> Any:
        """Decide which model the next request starts with."""
        with self._lock:
            state = self._state
            if state is None:
                return self.primary

            if self.policy.type == "requests":
                if state.requests_remaining > 0:
                    state.requests_remaining -= 1
                    return state.model
            elif self._clock() - state.set_at < self.policy.count:
                return state.model

            logger.info(
                "Sticky model expired, reverting to primary",
                sticky_model=model_key(state.model),
                primary_model=model_key(self.primary),
                policy=self.policy.type,
            )
            self._state = None
            return self.primary

    def record(self, start_model: Any, final_model: Any) -> None:
        """
        Update sticky state after a successful request.

        Nothing changes when the request succeeded on the model it started
        with. A retry that ended on another fallback promotes it (resetting
        the countdown); a retry that ended on the primary clears the state.
        """
        if model_key(final_model) == model_key(start_model):
            return

        with self._lock:
            if model_key(final_model) == model_key(self.primary):
                self._state = None
                return

            self._state = StickyState(
                model=final_model,
                set_at=self._clock(),
                requests_remaining=self.policy.count if self.policy.type == "requests" else 0,
            )

        logger.info(
            "Sticky model set",
            sticky_model=model_key(final_model),
            policy=self.policy.type,
            count=self.policy.count,
        )

    def reset(self) -> None:
        """Forget the sticky model."""
        with self._lock:
            self._state = None
