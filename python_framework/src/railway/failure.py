"""
Failure description — structured error information for the failure track.

An ErrorCode enum classifies the failure; FailureDescription carries the
human message, the optional underlying exception, structured details
(counters, operation names) and — for aggregated failures — the individual
causes that were joined together.

Python advantage: Enum + frozen dataclass gives __eq__, __hash__ and
__repr__ for free, and Enum members are singleton-comparable with `is`.
"""

from __future__ import annotations

import traceback
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from types import MappingProxyType
from typing import Any, Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Grouped by when they can occur during a deployment:
    - Before any network call: PARSE, CONFIGURATION, UNSUPPORTED_OPERATION, NOT_IMPLEMENTED
    - While talking to a platform: EXTERNAL_SERVICE, NOT_FOUND, PARTIAL_FAILURE, JOB_FAILED
    - Flow control: CANCELLED, TIMEOUT
    - Catch-all: TECHNICAL, UNKNOWN
    """

    # --- Rejected before any side effect ---
    PARSE_ERROR = "PARSE_ERROR"
    """Malformed PEM text or a non-certificate block."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """A required field is missing or invalid."""

    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    """The platform does not offer the requested capability."""

    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    """Placeholder capability that has no implementation yet."""

    # --- Platform interaction ---
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """A remote call failed; details carry the failing operation name."""

    NOT_FOUND = "NOT_FOUND"
    """Nothing on the platform matched what was asked for."""

    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    """One or more independent targets failed; causes hold each failure."""

    JOB_FAILED = "JOB_FAILED"
    """An asynchronous job finished with failed > 0."""

    # --- Flow control ---
    CANCELLED = "CANCELLED"
    """The caller cancelled the operation or its deadline passed."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """A bounded wait (e.g. polling attempts) ran out."""

    # --- Catch-all ---
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected exception inside our own code."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unclassified failure."""


_EMPTY_DETAILS: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor: code, message, optional exception, details, causes.

    >>> desc = FailureDescription(ErrorCode.CONFIGURATION_ERROR, "config `domain` is required")
    >>> desc.code
    <ErrorCode.CONFIGURATION_ERROR: 'CONFIGURATION_ERROR'>
    >>> desc.message
    'config `domain` is required'
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    details: Mapping[str, Any] = field(default=_EMPTY_DETAILS)
    causes: tuple[FailureDescription, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @staticmethod
    def create(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        **details: Any,
    ) -> FailureDescription:
        """Build a description with keyword details."""
        return FailureDescription(
            code=code,
            message=message,
            exception=exception,
            details=MappingProxyType(dict(details)) if details else _EMPTY_DETAILS,
        )

    @staticmethod
    def join(
        code: ErrorCode,
        summary: str,
        causes: Iterable[FailureDescription],
    ) -> FailureDescription:
        """
        Aggregate several failures into one.

        The message enumerates every cause on its own line so the text alone
        tells the reader which parts failed:

            2 of 5 targets failed
              - [a.example.com] failed to execute request 'bind': HTTP 500
              - [b.example.com] failed to execute request 'bind': HTTP 403
        """
        collected = tuple(causes)
        lines = [summary, *(f"  - {cause.message}" for cause in collected)]
        return FailureDescription(
            code=code,
            message="\n".join(lines),
            details=MappingProxyType({"failure_count": len(collected)}),
            causes=collected,
        )

    def with_prefix(self, prefix: str) -> FailureDescription:
        """Return a copy whose message is prefixed (e.g. with the target it belongs to)."""
        return FailureDescription(
            code=self.code,
            message=f"{prefix} {self.message}",
            exception=self.exception,
            details=self.details,
            causes=self.causes,
            timestamp=self.timestamp,
        )

    def full_stack_trace(self) -> str:
        """Full stack trace string including the message and exception chain."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__)
        )
        return f"{self.message}\n{tb}"

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class FailureError(Exception):
    """
    Exception carrying a FailureDescription through imperative code.

    Generators and worker threads cannot return a Result mid-iteration, so
    they raise FailureError instead; Result.from_computation converts it back
    into the very same failure.
    """

    def __init__(self, failure: FailureDescription) -> None:
        super().__init__(failure.message)
        self.failure = failure
