"""
Railway-Oriented Programming (ROP) Framework for Python.

Explicit, composable, functional error handling — no exceptions in business logic.

    from railway import Result, ErrorCode

    def require_domain(domain: str | None) -> Result[str]:
        if not domain:
            return Result.failure(ErrorCode.CONFIGURATION_ERROR, "config `domain` is required")
        return Result.success(domain)

    result = (
        Result.success({"domain": "example.com"})
        .flat_map(lambda d: require_domain(d["domain"]))
        .map(lambda domain: f"deploying to {domain}")
    )
"""

from railway.result import Result, Success, Failure
from railway.failure import ErrorCode, FailureDescription, FailureError
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
    with_context,
)
from railway.result_failures import ResultFailures
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "FailureError",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "with_context",
    "ResultFailures",
    "ResultAssertions",
]

__version__ = "1.1.0"
