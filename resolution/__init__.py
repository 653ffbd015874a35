"""Call-to-account resolution engine.

- matching: rank candidate accounts for a call (pure)
- queue: review queue paging, statistics and account search
- operations: resolve, bulk resolve, dismiss, create account, auto-resolve
- merge: merge accounts, find duplicates, preview, merge history
- service: ResolutionService, one transaction per public operation
"""
from resolution.config import ResolutionSettings, get_settings
from resolution.errors import (
    AlreadyResolved,
    Conflict,
    DuplicateAccount,
    InvalidMerge,
    NotFound,
    ResolutionError,
    TransactionFailure,
    ValidationError,
)
from resolution.service import ResolutionService

__all__ = [
    "ResolutionService",
    "ResolutionSettings",
    "get_settings",
    "ResolutionError",
    "ValidationError",
    "NotFound",
    "Conflict",
    "AlreadyResolved",
    "DuplicateAccount",
    "InvalidMerge",
    "TransactionFailure",
]
