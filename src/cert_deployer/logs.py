"""
Logger helpers shared by the manager and executor.

Components log through an injectable structlog logger so callers can route
one deployment's diagnostics elsewhere, or silence them with set_logger(None).
"""

from __future__ import annotations

from typing import Any

import structlog


def _drop_event(logger: Any, method_name: str, event_dict: Any) -> Any:
    raise structlog.DropEvent


def discard_logger() -> Any:
    """A bound logger whose events are dropped before rendering."""
    return structlog.wrap_logger(structlog.ReturnLogger(), processors=[_drop_event])


def or_discard(logger: Any | None) -> Any:
    return discard_logger() if logger is None else logger
