"""Exception hierarchy for authgraph.

Lookups that find nothing return ``None`` or an empty mapping; the errors below
are reserved for operations that would break a stored invariant.
"""

from __future__ import annotations


class AuthGraphError(Exception):
    """Base exception for authgraph."""

    def __init__(self, message: str = "An authorization store error occurred"):
        self.message = message
        super().__init__(self.message)


class InvalidArgumentError(AuthGraphError, ValueError):
    """Raised when an operation receives arguments that violate an item or edge constraint."""


class CycleDetectedError(AuthGraphError):
    """Raised when adding an edge would introduce a loop in the hierarchy."""


class AlreadyExistsError(AuthGraphError):
    """Raised when an item, rule, or edge with the same key is already stored."""


__all__ = [
    "AlreadyExistsError",
    "AuthGraphError",
    "CycleDetectedError",
    "InvalidArgumentError",
]
