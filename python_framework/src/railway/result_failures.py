"""
Convenience factory methods for common Result failures.

Eliminates boilerplate for the failures a deployment produces, and keeps
their messages uniform across providers.

Usage:
    from railway.result_failures import ResultFailures

    # Instead of:
    Result.failure(ErrorCode.CONFIGURATION_ERROR, "config `domain` is required")

    # Write:
    ResultFailures.missing_config("domain")
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from railway.failure import ErrorCode, FailureDescription, FailureError
from railway.result import Failure, Result

T = TypeVar("T")


class ResultFailures:
    """Factory methods for common failure types, plus exception mapping."""

    @staticmethod
    def parse_error(message: str, exception: BaseException | None = None) -> Result:
        """Malformed PEM text or a non-certificate block."""
        return Result.failure(ErrorCode.PARSE_ERROR, message, exception)

    @staticmethod
    def configuration_error(message: str) -> Result:
        """Missing or invalid configuration."""
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, message)

    @staticmethod
    def missing_config(field_name: str) -> Result:
        """A required configuration field is absent."""
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, f"config `{field_name}` is required")

    @staticmethod
    def unsupported(operation: str) -> Result:
        """The platform does not offer this capability."""
        return Result.failure_from(
            FailureDescription.create(
                ErrorCode.UNSUPPORTED_OPERATION,
                f"operation '{operation}' is not supported by this platform",
                operation=operation,
            )
        )

    @staticmethod
    def not_implemented(what: str) -> Result:
        """Capability reserved but not built."""
        return Result.failure(ErrorCode.NOT_IMPLEMENTED, f"{what} is not implemented")

    @staticmethod
    def upstream_error(
        operation: str,
        message: str,
        exception: BaseException | None = None,
    ) -> Result:
        """
        A remote call failed. The message names the failing operation:

            failed to execute request 'list_certificates': HTTP 502
        """
        return Result.failure_from(
            FailureDescription.create(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"failed to execute request '{operation}': {message}",
                exception,
                operation=operation,
            )
        )

    @staticmethod
    def not_found(message: str) -> Result:
        """Nothing on the platform matched."""
        return Result.failure(ErrorCode.NOT_FOUND, message)

    @staticmethod
    def partial_failure(failures: Iterable[FailureDescription], total: int) -> Result:
        """Some of `total` independent targets failed; every cause is kept."""
        collected = list(failures)
        return Result.failure_from(
            FailureDescription.join(
                ErrorCode.PARTIAL_FAILURE,
                f"{len(collected)} of {total} targets failed",
                collected,
            )
        )

    @staticmethod
    def job_failed(succeeded: int, failed: int, total: int) -> Result:
        """An asynchronous deployment job finished with failures."""
        return Result.failure_from(
            FailureDescription.create(
                ErrorCode.JOB_FAILED,
                f"deployment job failed (succeeded: {succeeded}, failed: {failed}, total: {total})",
                succeeded=succeeded,
                failed=failed,
                total=total,
            )
        )

    @staticmethod
    def cancelled(reason: str = "cancelled") -> Result:
        """The caller cancelled, or the overall deadline passed."""
        message = "context deadline exceeded" if reason == "deadline_exceeded" else "context canceled"
        return Result.failure_from(FailureDescription.create(ErrorCode.CANCELLED, message, reason=reason))

    @staticmethod
    def timeout_error(message: str) -> Result:
        """A bounded wait ran out."""
        return Result.failure(ErrorCode.TIMEOUT_ERROR, message)

    @staticmethod
    def technical_error(message: str, exception: BaseException | None = None) -> Result:
        """Unexpected exception in our own code."""
        return Result.failure(ErrorCode.TECHNICAL_ERROR, message, exception)

    @staticmethod
    def from_exception(message: str, exception: BaseException) -> Result:
        """
        Auto-map a Python exception to the appropriate ErrorCode.

        Mapping:
          - FailureError → the failure it carries
          - ValueError, TypeError, KeyError → PARSE_ERROR
          - FileNotFoundError, LookupError → NOT_FOUND
          - TimeoutError → TIMEOUT_ERROR
          - ConnectionError, OSError → EXTERNAL_SERVICE_ERROR
          - Everything else → UNKNOWN_ERROR
        """
        if isinstance(exception, FailureError):
            return Failure(exception.failure)
        code = _map_exception_to_code(exception)
        return Result.failure(code, message, exception)

    @staticmethod
    def from_exception_auto(exception: BaseException) -> Result:
        """Map exception using its own message."""
        return ResultFailures.from_exception(str(exception), exception)


def _map_exception_to_code(exception: BaseException) -> ErrorCode:
    """Map a Python exception type to the most appropriate ErrorCode."""
    match exception:
        case ValueError() | TypeError() | KeyError():
            return ErrorCode.PARSE_ERROR
        case FileNotFoundError() | LookupError():
            return ErrorCode.NOT_FOUND
        case TimeoutError():
            return ErrorCode.TIMEOUT_ERROR
        case ConnectionError() | OSError():
            return ErrorCode.EXTERNAL_SERVICE_ERROR
        case _:
            return ErrorCode.UNKNOWN_ERROR
