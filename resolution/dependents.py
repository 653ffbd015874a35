"""Registry of every entity that references an account.

Merge walks DEPENDENTS in order and calls each entry's reassign(). Adding a
table with a foreign key to crm.accounts.id without registering it here makes
unregistered_account_references() non-empty, and merge refuses to run.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy import MetaData, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

import db.repositories.contacts as contact_repo
from db.models import (
    AccountDomainAlias,
    Base,
    Call,
    Contact,
    CrmEvent,
    LandingPage,
    Story,
)
from db.repositories import count_for_account, repoint_account

logger = logging.getLogger(__name__)

ACCOUNT_KEY = "crm.accounts.id"


@dataclass
class Reassignment:
    """What one dependent's reassign() did."""

    moved: list[UUID] = field(default_factory=list)
    moved_keys: list[str] = field(default_factory=list)
    discarded: list[dict[str, Any]] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Dependent:
    name: str
    model: Any
    reassign: Callable[[AsyncSession, UUID, UUID, UUID], Awaitable[Reassignment]]
    column: str = "account_id"

    async def count(self, session: AsyncSession, tenant_id: UUID, account_id: UUID) -> int:
        return await count_for_account(session, self.model, tenant_id, account_id)


def _repoint(model) -> Callable[[AsyncSession, UUID, UUID, UUID], Awaitable[Reassignment]]:
    async def reassign(
        session: AsyncSession, tenant_id: UUID, source_id: UUID, target_id: UUID
    ) -> Reassignment:
        moved = await repoint_account(session, model, tenant_id, source_id, target_id)
        return Reassignment(moved=moved)

    return reassign


async def _reassign_contacts(
    session: AsyncSession, tenant_id: UUID, source_id: UUID, target_id: UUID
) -> Reassignment:
    """Move the source's contacts; an email the target already has is discarded."""
    source_contacts = await contact_repo.list_for_account(session, tenant_id, source_id)
    target_emails = {
        contact.email
        for contact in await contact_repo.list_for_account(session, tenant_id, target_id)
    }
    duplicates = [c for c in source_contacts if c.email in target_emails]
    movable = [c.id for c in source_contacts if c.email not in target_emails]
    discarded = [{"id": str(c.id), "email": c.email} for c in duplicates]

    await contact_repo.delete_ids(session, [c.id for c in duplicates])
    moved = await repoint_account(
        session, Contact, tenant_id, source_id, target_id, ids=movable
    )
    for entry in discarded:
        logger.warning(
            "Discarded duplicate contact %s (%s) while merging %s into %s",
            entry["id"], entry["email"], source_id, target_id,
        )
    return Reassignment(moved=moved, discarded=discarded)


async def _reassign_aliases(
    session: AsyncSession, tenant_id: UUID, source_id: UUID, target_id: UUID
) -> Reassignment:
    """Re-point the source's aliases; a domain the target already holds is dropped."""
    result = await session.execute(
        select(AccountDomainAlias.id, AccountDomainAlias.domain, AccountDomainAlias.account_id)
        .where(AccountDomainAlias.tenant_id == tenant_id)
        .where(AccountDomainAlias.account_id.in_([source_id, target_id]))
    )
    rows = result.all()
    target_domains = {domain.lower() for _, domain, owner in rows if owner == target_id}
    source_rows = [(alias_id, domain) for alias_id, domain, owner in rows if owner == source_id]

    dropped = sorted(domain for _, domain in source_rows if domain.lower() in target_domains)
    keep = [alias_id for alias_id, domain in source_rows if domain.lower() not in target_domains]
    if dropped:
        drop_ids = [
            alias_id for alias_id, domain in source_rows if domain.lower() in target_domains
        ]
        await session.execute(
            delete(AccountDomainAlias)
            .where(AccountDomainAlias.id.in_(drop_ids))
            .execution_options(synchronize_session="fetch")
        )
        await session.flush()

    moved = await repoint_account(
        session, AccountDomainAlias, tenant_id, source_id, target_id, ids=keep
    )
    moved_set = set(moved)
    moved_domains = sorted(domain for alias_id, domain in source_rows if alias_id in moved_set)
    return Reassignment(moved=moved, moved_keys=moved_domains, dropped=dropped)


DEPENDENTS: tuple[Dependent, ...] = (
    Dependent("calls", Call, _repoint(Call)),
    Dependent("contacts", Contact, _reassign_contacts),
    Dependent("domain_aliases", AccountDomainAlias, _reassign_aliases),
    Dependent("stories", Story, _repoint(Story)),
    Dependent("landing_pages", LandingPage, _repoint(LandingPage)),
    Dependent("crm_events", CrmEvent, _repoint(CrmEvent)),
)


def unregistered_account_references(
    metadata: MetaData = Base.metadata, registry: tuple[Dependent, ...] = DEPENDENTS
) -> list[str]:
    """Foreign keys to crm.accounts.id that no registry entry covers.

    Returned as "schema.table.column" strings; empty means merge is safe.
    """
    covered = {(d.model.__table__.fullname, d.column) for d in registry}
    missing = []
    for table in metadata.sorted_tables:
        for fk in table.foreign_keys:
            if fk.target_fullname != ACCOUNT_KEY:
                continue
            if (table.fullname, fk.parent.name) not in covered:
                missing.append(f"{table.fullname}.{fk.parent.name}")
    return sorted(missing)
