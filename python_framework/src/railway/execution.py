"""
Execution contexts — separate WHAT (pure logic) from HOW (side effects).

A deployment pipeline describes WHAT should happen and returns Result[T];
an ExecutionContext decides HOW it runs around that computation (timing,
logging, turning stray exceptions into failures). The two are never mixed:
stages do not log their own start/stop, the context does.

Usage:
    def deploy() -> Result[DeployResult]:
        return (
            Result.success(cert_pem)
            .flat_map(parse)
            .flat_map(upload)
            .flat_map(bind_all)
        )

    result = LoggingExecutionContext(operation="deploy").execute(deploy)

    # Or as a decorator
    @with_context(LoggingExecutionContext(operation="deploy"))
    def run() -> Result[DeployResult]:
        return deploy()
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

from railway.failure import ErrorCode, FailureDescription, FailureError
from railway.result import Failure, Result

T = TypeVar("T")
logger = logging.getLogger("railway.execution")


# ──────────────────────── Protocol (Interface) ────────────────────────


@runtime_checkable
class ExecutionContext(Protocol):
    """
    Protocol for execution contexts.

    Any class implementing execute(computation) satisfies this protocol
    via structural typing — no explicit inheritance needed.
    """

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        """Execute a Result-returning computation within this context."""
        ...


# ──────────────────────── NoOp (Testing) ────────────────────────


class NoOpExecutionContext:
    """
    Passthrough execution context — runs the computation without any wrapper.

        result = NoOpExecutionContext().execute(lambda: executor.deploy(ctx, ...))
    """

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


# ──────────────────────── Logging ────────────────────────


class LoggingExecutionContext:
    """
    Execution context that logs entry, exit, duration, and result state.

    Wraps another context (decorator pattern). An exception escaping the
    computation is converted to a failure: a FailureError keeps its own
    description, anything else becomes TECHNICAL_ERROR.

        ctx = LoggingExecutionContext(operation="deploy")
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
        log_level: int = logging.INFO,
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation
        self._log_level = log_level

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        logger.log(self._log_level, "[%s] Starting execution", self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except FailureError as e:
            result = Failure(e.failure)
        except Exception as e:
            elapsed = time.monotonic() - start
            logger.error(
                "[%s] Execution failed after %.3fs: %s",
                self._operation,
                elapsed,
                e,
            )
            return Failure(
                FailureDescription(
                    ErrorCode.TECHNICAL_ERROR,
                    f"Execution failed: {e}",
                    e,
                )
            )

        elapsed = time.monotonic() - start
        state = "SUCCESS" if result.is_success() else "FAILURE"
        logger.log(
            self._log_level,
            "[%s] Completed in %.3fs — %s",
            self._operation,
            elapsed,
            state,
        )
        return result


# ──────────────────────── Decorator Helper ────────────────────────


def with_context(ctx: ExecutionContext) -> Callable:
    """
    Decorator to run a Result-returning function inside an execution context.

        @with_context(LoggingExecutionContext(operation="deploy"))
        def run(settings: AppSettings) -> Result[DeployResult]:
            ...
    """

    def decorator(fn: Callable[..., Result[T]]) -> Callable[..., Result[T]]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Result[T]:
            return ctx.execute(lambda: fn(*args, **kwargs))

        return wrapper

    return decorator
