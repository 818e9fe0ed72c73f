"""
Error taxonomy shared by every Casebook component.

- ValidationError: malformed input. Surfaced to the caller, never retried.
- NotFoundError: the id does not exist (anymore). Surfaced, never retried.
- TransientError: storage timeout or connection failure. Retried with backoff,
  surfaced once retries are exhausted.
"""

from __future__ import annotations


class CasebookError(Exception):
    """Base class for all errors raised by Casebook."""


class ValidationError(CasebookError, ValueError):
    """Raised when input is malformed (empty field name, unknown category, ...)."""


class NotFoundError(CasebookError, LookupError):
    """Raised when operating on an unknown or deleted id."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class TransientError(CasebookError):
    """Raised when the backing store timed out or the connection failed."""


__all__ = [
    "CasebookError",
    "ValidationError",
    "NotFoundError",
    "TransientError",
]
