"""Request and response payloads for the resolution engine."""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


MatchMethod = Literal["none", "email_domain", "fuzzy_name", "manual"]
SortBy = Literal["occurred_at", "match_confidence"]
SortOrder = Literal["asc", "desc"]
CallState = Literal["resolved", "queued", "dismissed"]


class MatchCandidate(BaseModel):
    account_id: UUID
    account_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    match_method: Literal["email_domain", "fuzzy_name"]
    matched_on: str
    reason: str


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------


class QueueQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1, le=100)
    search: Optional[str] = Field(default=None, max_length=200)
    sort_by: SortBy = "occurred_at"
    sort_order: SortOrder = "desc"


class ParticipantView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: Optional[str] = None
    name: Optional[str] = None
    is_host: bool = False


class QueueItem(BaseModel):
    id: UUID
    title: Optional[str] = None
    provider: Optional[str] = None
    occurred_at: datetime
    match_confidence: Optional[float] = None
    match_method: MatchMethod
    participants: List[ParticipantView]
    candidates: List[MatchCandidate]


class QueuePage(BaseModel):
    items: List[QueueItem]
    total: int
    page: int
    page_size: int


class ConfidenceBucket(BaseModel):
    range_start: float
    range_end: float
    count: int


class QueueStats(BaseModel):
    queued: int
    no_match: int
    low_confidence: int
    ambiguous: int
    dismissed: int
    resolved_recently: int
    resolved_window_hours: int
    average_confidence: Optional[float] = None
    min_confidence: Optional[float] = None
    max_confidence: Optional[float] = None
    confidence_buckets: List[ConfidenceBucket]


class AccountSummary(BaseModel):
    id: UUID
    name: str
    normalized_name: str
    domain: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)

    @classmethod
    def from_account(cls, account, aliases=()) -> "AccountSummary":
        return cls(
            id=account.id,
            name=account.name,
            normalized_name=account.normalized_name,
            domain=account.domain,
            aliases=sorted(aliases),
        )


# ---------------------------------------------------------------------------
# Resolution operations
# ---------------------------------------------------------------------------


class AliasConflict(BaseModel):
    domain: str
    existing_account_id: UUID


class ContactConflict(BaseModel):
    email: str
    existing_account_id: UUID


class ResolveResult(BaseModel):
    call_id: UUID
    account_id: UUID
    aliases_added: List[str] = Field(default_factory=list)
    alias_conflicts: List[AliasConflict] = Field(default_factory=list)
    contacts_created: List[str] = Field(default_factory=list)
    contact_conflicts: List[ContactConflict] = Field(default_factory=list)


class BulkResolveResult(BaseModel):
    account_id: UUID
    resolved: int
    results: List[ResolveResult]


class DismissResult(BaseModel):
    dismissed: List[UUID]
    already_dismissed: List[UUID] = Field(default_factory=list)
    skipped_resolved: List[UUID] = Field(default_factory=list)
    not_found: List[UUID] = Field(default_factory=list)


class CreateAccountResult(BaseModel):
    account: AccountSummary
    resolution: ResolveResult


class AutoResolveResult(BaseModel):
    call_id: UUID
    state: CallState
    account_id: Optional[UUID] = None
    match_confidence: Optional[float] = None
    match_method: MatchMethod
    candidates: List[MatchCandidate]


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class DiscardedContact(BaseModel):
    id: UUID
    email: str


class MergeResult(BaseModel):
    run_id: UUID
    source_account_id: UUID
    target_account_id: UUID
    calls_moved: int
    contacts_moved: int
    contacts_discarded: List[DiscardedContact]
    aliases_moved: List[str]
    aliases_dropped: List[str]
    aliases_added: List[str]
    reassigned_counts: Dict[str, int]


class DuplicateCandidate(BaseModel):
    account_a: AccountSummary
    account_b: AccountSummary
    similarity: float = Field(ge=0.0, le=1.0)
    match_reason: Literal["normalized_name", "shared_domain"]


class CallBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: Optional[str] = None
    occurred_at: datetime


class AccountPreview(BaseModel):
    account: AccountSummary
    call_count: int
    contact_emails: List[str]
    dependent_counts: Dict[str, int]
    recent_calls: List[CallBrief]


class MergePreview(BaseModel):
    source: AccountPreview
    target: AccountPreview
    shared_contact_emails: List[str]
    contacts_to_discard: int


class MergeRunSummary(BaseModel):
    id: UUID
    source_account_id: UUID
    target_account_id: UUID
    initiated_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    moved_counts: Dict[str, int]
