from __future__ import annotations

from typing import Any


class IntelError(Exception):
    """Common wrapper that preserves the original exception."""

    def __init__(self, message: str, original: Exception | None = None, **context: Any):
        super().__init__(message)
        self.original = original
        self.context = context


class SourceUnavailable(IntelError):
    """A venue or oracle query failed or timed out."""


class InsufficientData(IntelError):
    """Too few data points for a confident signal."""


class PersistenceFailure(IntelError):
    """State or ledger write failed; in-memory state stays authoritative."""


class LogicInvariant(IntelError):
    """An internal invariant was broken (e.g. two markets of one venue in a cluster)."""


def check_invariant(condition: bool, message: str, strict: bool = True, logger=None, **context: Any) -> bool:
    if condition:
        return True
    if strict:
        raise LogicInvariant(message, **context)
    if logger is not None:
        logger.error("invariant violated", message=message, **context)
    return False


__all__ = [
    "IntelError",
    "SourceUnavailable",
    "InsufficientData",
    "PersistenceFailure",
    "LogicInvariant",
    "check_invariant",
]
