"""
Polling policy — fixed-interval waits between job status fetches.

Platform jobs in this domain take tens of seconds to minutes; a fixed
interval is used instead of exponential backoff. The wait itself is
injectable so tests run with a zero-delay sleeper.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from cert_deployer.domain.context import DeployContext

# (ctx, seconds) -> True when the context is done after the wait
Sleeper = Callable[[DeployContext, float], bool]


def _context_sleep(ctx: DeployContext, seconds: float) -> bool:
    return ctx.wait(seconds)


def _no_sleep(ctx: DeployContext, seconds: float) -> bool:
    return ctx.done


@dataclass(frozen=True, slots=True)
class PollingPolicy:
    """Interval between polls and an optional cap on the number of polls."""

    interval_seconds: float = 5.0
    max_attempts: int | None = None
    sleeper: Sleeper = field(default=_context_sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def immediate(cls, max_attempts: int | None = None) -> PollingPolicy:
        """No real waiting; cancellation is still observed between polls."""
        return cls(interval_seconds=0, max_attempts=max_attempts, sleeper=_no_sleep)

    def attempts(self) -> Iterator[int]:
        """1, 2, 3, ... up to max_attempts (unbounded without one)."""
        if self.max_attempts is None:
            return itertools.count(1)
        return iter(range(1, self.max_attempts + 1))

    def pause(self, ctx: DeployContext) -> bool:
        """Wait one interval. Returns True when the context is done afterwards."""
        return self.sleeper(ctx, self.interval_seconds)
