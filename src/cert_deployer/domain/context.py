"""
Deploy context — cooperative cancellation and an optional overall deadline.

Every blocking boundary of a deployment (network call, page fetch, poll
sleep) receives the DeployContext and checks it. Cancellation never rolls
anything back: already-applied binds stay applied, the engine just stops
issuing further calls and reports CANCELLED.

    ctx = DeployContext.with_timeout(600)
    signal.signal(signal.SIGTERM, lambda *_: ctx.cancel())
    executor.deploy(ctx, cert_pem, key_pem, config)

The context is safe to share between the worker threads of one deploy call.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TypeVar

from railway import ErrorCode, FailureDescription, FailureError
from railway.result import Result

T = TypeVar("T")

REASON_CANCELLED = "cancelled"
REASON_DEADLINE = "deadline_exceeded"


class DeployContext:
    """Cancellation flag plus optional monotonic deadline."""

    def __init__(
        self,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cancelled = threading.Event()
        self._deadline = deadline
        self._clock = clock

    @classmethod
    def background(cls) -> DeployContext:
        """A context that is only ever done when cancelled explicitly."""
        return cls()

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> DeployContext:
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.deadline_exceeded

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def clamp_timeout(self, timeout: float) -> float:
        """Shrink a per-call timeout so it never outlives the deadline."""
        remaining = self.remaining()
        return timeout if remaining is None else min(timeout, remaining)

    def err(self) -> FailureDescription | None:
        """The CANCELLED failure describing why this context is done, or None."""
        if self.cancelled:
            return _cancelled(REASON_CANCELLED, "context canceled")
        if self.deadline_exceeded:
            return _cancelled(REASON_DEADLINE, "context deadline exceeded")
        return None

    def guard(self, value: T) -> Result[T]:
        """Pass `value` along the success track unless the context is done."""
        error = self.err()
        return Result.success(value) if error is None else Result.failure_from(error)

    def raise_if_done(self) -> None:
        """Imperative variant of guard() for loops and generators."""
        error = self.err()
        if error is not None:
            raise FailureError(error)

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on cancellation or deadline.

        Returns True when the context is done afterwards.
        """
        if seconds > 0:
            self._cancelled.wait(self.clamp_timeout(seconds))
        return self.done


def _cancelled(reason: str, message: str) -> FailureDescription:
    return FailureDescription.create(ErrorCode.CANCELLED, message, reason=reason)
