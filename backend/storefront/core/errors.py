"""Typed failures raised by the reservation and ledger services.

Expected, caller-recoverable outcomes derive from ``ValueError`` so route
handlers can catch the whole family the same way they catch plain
``ValueError`` elsewhere. ``ConsistencyError`` is a ``RuntimeError``: it
signals a broken ledger invariant and aborts the enclosing transaction.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for all service-level failures."""


class ValidationError(StorefrontError, ValueError):
    """Malformed or out-of-range input, rejected before any side effect."""


class ConflictError(StorefrontError, ValueError):
    """Availability overlap or business-hours violation."""

    def __init__(self, message: str, *, rule: str) -> None:
        super().__init__(message)
        self.rule = rule


class StateError(StorefrontError, ValueError):
    """Transition not permitted from the current status."""


class NotFoundError(StorefrontError, ValueError):
    """Referenced entity is missing or belongs to another store."""


class PermissionDeniedError(StorefrontError, ValueError):
    """Caller does not own the reservation being mutated."""


class ConsistencyError(StorefrontError, RuntimeError):
    """Ledger chain race or duplicate posting detected."""


__all__ = [
    "ConflictError",
    "ConsistencyError",
    "NotFoundError",
    "PermissionDeniedError",
    "StateError",
    "StorefrontError",
    "ValidationError",
]
