from .resolution import (
    MatchCandidate,
    QueueQuery,
    ParticipantView,
    QueueItem,
    QueuePage,
    ConfidenceBucket,
    QueueStats,
    AccountSummary,
    AliasConflict,
    ContactConflict,
    ResolveResult,
    BulkResolveResult,
    DismissResult,
    CreateAccountResult,
    AutoResolveResult,
    DiscardedContact,
    MergeResult,
    DuplicateCandidate,
    CallBrief,
    AccountPreview,
    MergePreview,
    MergeRunSummary,
)

__all__ = [
    "MatchCandidate", "QueueQuery", "ParticipantView", "QueueItem", "QueuePage",
    "ConfidenceBucket", "QueueStats", "AccountSummary",
    "AliasConflict", "ContactConflict", "ResolveResult", "BulkResolveResult",
    "DismissResult", "CreateAccountResult", "AutoResolveResult",
    "DiscardedContact", "MergeResult", "DuplicateCandidate", "CallBrief",
    "AccountPreview", "MergePreview", "MergeRunSummary",
]
