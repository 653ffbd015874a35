"""Typed failures returned by every resolution operation.

Callers branch on the class (or on ``code``); ``retryable`` is True only for
TransactionFailure, whose partial effects are guaranteed rolled back.
"""
from typing import Any, Optional


class ResolutionError(Exception):
    """Base class for failures surfaced to callers of the resolution engine."""

    code = "resolution_error"
    retryable = False

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(ResolutionError):
    """Malformed or missing input. A caller bug, never retried."""

    code = "validation_error"


class NotFound(ResolutionError):
    """Call or account missing, or owned by another tenant."""

    code = "not_found"


class Conflict(ResolutionError):
    """State conflict that a human has to decide on."""

    code = "conflict"


class AlreadyResolved(Conflict):
    code = "already_resolved"


class DuplicateAccount(Conflict):
    code = "duplicate_account"


class InvalidMerge(ResolutionError):
    """Self-merge or otherwise impossible merge request."""

    code = "invalid_merge"


class TransactionFailure(ResolutionError):
    """Storage rolled back the unit of work. Safe to retry."""

    code = "transaction_failure"
    retryable = True
