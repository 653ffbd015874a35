"""SQLAlchemy 2.0 ORM models for the call-to-account resolution engine.

Covers 9 tables in the crm schema:
  - accounts, account_domain_aliases, contacts
  - calls, call_participants
  - stories, landing_pages, crm_events   (dependents rewritten by merge)
  - account_merge_runs                   (merge audit ledger)

Every tenant-owned table carries tenant_id. Tenants live in an external
registry, so tenant_id is a loose UUID reference with no FK enforced.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    UUID,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


# ---------------------------------------------------------------------------
# Shared base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enumerated values used in CHECK constraints
# ---------------------------------------------------------------------------

MATCH_METHODS = ("none", "email_domain", "fuzzy_name", "manual")

ALIAS_SOURCES = ("crm_sync", "manual_resolution", "account_creation", "merge")


def _in_check(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


# ===========================================================================
# Accounts and learned identity data
# ===========================================================================


class Account(Base):
    """crm.accounts — canonical CRM customer account."""

    __tablename__ = "accounts"
    __table_args__ = (
        Index("ix_accounts_tenant_normalized_name", "tenant_id", "normalized_name"),
        Index("ix_accounts_tenant_domain", "tenant_id", "domain"),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    salesforce_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hubspot_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    domain_aliases: Mapped[list["AccountDomainAlias"]] = relationship(
        "AccountDomainAlias", back_populates="account"
    )
    contacts: Mapped[list["Contact"]] = relationship(
        "Contact", back_populates="account"
    )
    calls: Mapped[list["Call"]] = relationship("Call", back_populates="account")


class AccountDomainAlias(Base):
    """crm.account_domain_aliases — "emails from this domain belong to this account"."""

    __tablename__ = "account_domain_aliases"
    __table_args__ = (
        UniqueConstraint("tenant_id", "domain", name="uq_alias_tenant_domain"),
        CheckConstraint(_in_check("source", ALIAS_SOURCES), name="ck_alias_source"),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.accounts.id"),
        nullable=False,
        index=True,
    )
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, server_default="crm_sync")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationship
    account: Mapped["Account"] = relationship(
        "Account", back_populates="domain_aliases"
    )


class Contact(Base):
    """crm.contacts — a person (by email) known to belong to an account.

    CRM sync may deliver the same email under two duplicate accounts; the
    resolution operations never add a second row for a known email, and
    merge collapses such pairs.
    """

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "account_id", "email", name="uq_contact_tenant_account_email"
        ),
        Index("ix_contacts_tenant_email", "tenant_id", "email"),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.accounts.id"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(Text, nullable=False)
    email_domain: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationship
    account: Mapped["Account"] = relationship("Account", back_populates="contacts")


# ===========================================================================
# Calls
# ===========================================================================


class Call(Base):
    """crm.calls — one recorded meeting awaiting or holding an account.

    State is exactly one of: resolved (account_id set), queued (no account,
    not dismissed), dismissed (no account, dismissed).
    """

    __tablename__ = "calls"
    __table_args__ = (
        CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_call_match_confidence_range",
        ),
        CheckConstraint(
            "NOT (account_id IS NOT NULL AND dismissed)",
            name="ck_call_resolved_not_dismissed",
        ),
        CheckConstraint(_in_check("match_method", MATCH_METHODS), name="ck_call_match_method"),
        Index("ix_calls_tenant_queue", "tenant_id", "account_id", "dismissed"),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.accounts.id"),
        nullable=True,
        index=True,
    )
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    external_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dismissed: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    match_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    match_method: Mapped[str] = mapped_column(
        Text, server_default="none", default="none", nullable=False
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="calls"
    )
    participants: Mapped[list["CallParticipant"]] = relationship(
        "CallParticipant", back_populates="call", order_by="CallParticipant.id"
    )

    @property
    def state(self) -> str:
        """'resolved', 'queued' or 'dismissed'."""
        if self.account_id is not None:
            return "resolved"
        return "dismissed" if self.dismissed else "queued"


class CallParticipant(Base):
    """crm.call_participants — a person on a call, immutable once ingested."""

    __tablename__ = "call_participants"
    __table_args__ = {"schema": "crm"}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    call_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.calls.id"),
        nullable=False,
        index=True,
    )
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_host: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )

    # Relationship
    call: Mapped["Call"] = relationship("Call", back_populates="participants")


# ===========================================================================
# Dependents that only merge touches
# ===========================================================================


class Story(Base):
    """crm.stories — generated narrative documents about an account."""

    __tablename__ = "stories"
    __table_args__ = {"schema": "crm"}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.accounts.id"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class LandingPage(Base):
    """crm.landing_pages — published pages built from a story."""

    __tablename__ = "landing_pages"
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'archived')",
            name="ck_landing_page_status",
        ),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    story_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.stories.id"),
        nullable=False,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.accounts.id"),
        nullable=False,
        index=True,
    )
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="draft")
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class CrmEvent(Base):
    """crm.crm_events — opportunity/stage history pulled from the CRM."""

    __tablename__ = "crm_events"
    __table_args__ = {"schema": "crm"}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crm.accounts.id"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    opportunity_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    raw_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)


# ===========================================================================
# Merge ledger
# ===========================================================================


class AccountMergeRun(Base):
    """crm.account_merge_runs — audit record written by every successful merge."""

    __tablename__ = "account_merge_runs"
    __table_args__ = (
        Index("ix_merge_runs_tenant_created", "tenant_id", "created_at"),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    # Loose UUID references, the source account no longer exists
    source_account_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    target_account_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    moved_call_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    moved_contact_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    discarded_contacts: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    moved_alias_domains: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    dropped_alias_domains: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    reassigned_counts: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
    initiated_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "Base",
    "MATCH_METHODS",
    "ALIAS_SOURCES",
    # identity
    "Account",
    "AccountDomainAlias",
    "Contact",
    # calls
    "Call",
    "CallParticipant",
    # merge dependents
    "Story",
    "LandingPage",
    "CrmEvent",
    # ledger
    "AccountMergeRun",
]
