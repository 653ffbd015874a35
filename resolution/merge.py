"""Account merge: fold a duplicate (source) account into a surviving (target).

merge_accounts() runs in the caller's transaction:

  1. reject self-merge, lock both rows FOR UPDATE in id order
  2. walk the dependent registry (calls, contacts, aliases, stories,
     landing pages, CRM events) re-pointing source rows at the target
  3. alias the source's primary domain to the target, backfill the
     target's empty CRM fields
  4. write the merge ledger row, delete the source

Nothing is committed here; a failure anywhere rolls the whole merge back.
Merges are irreversible. The ledger keeps what moved for audit only.
"""
import logging
from itertools import combinations
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

import db.repositories.accounts as account_repo
import db.repositories.aliases as alias_repo
import db.repositories.calls as call_repo
import db.repositories.contacts as contact_repo
import db.repositories.merge_runs as merge_run_repo
from db.models import Account, Base
from resolution.config import ResolutionSettings
from resolution.dependents import DEPENDENTS, Dependent, unregistered_account_references
from resolution.errors import InvalidMerge, NotFound, ValidationError
from resolution.matching import duplicate_similarity
from schemas.resolution import (
    AccountPreview,
    AccountSummary,
    CallBrief,
    DiscardedContact,
    DuplicateCandidate,
    MergePreview,
    MergeResult,
    MergeRunSummary,
)

logger = logging.getLogger(__name__)

BACKFILL_FIELDS = ("domain", "industry", "salesforce_id", "hubspot_id")
SHARED_DOMAIN_SIMILARITY = 0.95
MAX_MERGE_RUNS = 200


def _snapshot(account: Account) -> dict:
    return {
        "id": str(account.id),
        "name": account.name,
        "normalized_name": account.normalized_name,
        "domain": account.domain,
        "industry": account.industry,
        "salesforce_id": account.salesforce_id,
        "hubspot_id": account.hubspot_id,
        "last_synced_at": account.last_synced_at.isoformat() if account.last_synced_at else None,
    }


async def merge_accounts(
    session: AsyncSession,
    tenant_id: UUID,
    source_id: UUID,
    target_id: UUID,
    *,
    initiated_by: Optional[str] = None,
    notes: Optional[str] = None,
    registry: tuple[Dependent, ...] = DEPENDENTS,
) -> MergeResult:
    """Move everything from source to target and delete source."""
    missing = unregistered_account_references(Base.metadata, registry)
    if missing:
        raise RuntimeError(
            "Account references not covered by the merge registry: " + ", ".join(missing)
        )
    if source_id == target_id:
        raise InvalidMerge(
            "Cannot merge an account into itself", details={"account_id": str(source_id)}
        )

    locked = await account_repo.lock_pair(session, tenant_id, source_id, target_id)
    source, target = locked[source_id], locked[target_id]
    if source is None:
        raise NotFound("Source account not found", details={"account_id": str(source_id)})
    if target is None:
        raise NotFound("Target account not found", details={"account_id": str(target_id)})

    snapshot = _snapshot(source)
    outcomes = {}
    for dependent in registry:
        outcomes[dependent.name] = await dependent.reassign(
            session, tenant_id, source.id, target.id
        )
        logger.debug(
            "Merge %s -> %s: moved %d %s",
            source.id, target.id, len(outcomes[dependent.name].moved), dependent.name,
        )

    aliases_added = []
    source_domain = source.domain.lower().strip() if source.domain else None
    target_domain = target.domain.lower().strip() if target.domain else None
    if source_domain and source_domain != target_domain:
        _, created = await alias_repo.add_if_absent(
            session, tenant_id, target.id, source_domain, "merge"
        )
        if created:
            aliases_added.append(source_domain)

    backfill = {
        name: getattr(source, name)
        for name in BACKFILL_FIELDS
        if getattr(target, name) is None and getattr(source, name) is not None
    }
    await account_repo.update_fields(session, target.id, backfill)

    calls = outcomes.get("calls")
    contacts = outcomes.get("contacts")
    aliases = outcomes.get("domain_aliases")
    run = await merge_run_repo.record(
        session,
        tenant_id,
        {
            "source_account_id": source.id,
            "target_account_id": target.id,
            "source_snapshot": snapshot,
            "moved_call_ids": [str(i) for i in calls.moved] if calls else [],
            "moved_contact_ids": [str(i) for i in contacts.moved] if contacts else [],
            "discarded_contacts": contacts.discarded if contacts else [],
            "moved_alias_domains": aliases.moved_keys if aliases else [],
            "dropped_alias_domains": aliases.dropped if aliases else [],
            "reassigned_counts": {name: len(o.moved) for name, o in outcomes.items()},
            "initiated_by": initiated_by,
            "notes": notes,
        },
    )

    if await account_repo.delete_account(session, source.id) != 1:
        raise NotFound("Source account not found", details={"account_id": str(source_id)})

    logger.info(
        "Merged account %s (%s) into %s for tenant %s: %s",
        source_id, snapshot["name"], target_id, tenant_id, run.reassigned_counts,
    )
    return MergeResult(
        run_id=run.id,
        source_account_id=source_id,
        target_account_id=target_id,
        calls_moved=len(calls.moved) if calls else 0,
        contacts_moved=len(contacts.moved) if contacts else 0,
        contacts_discarded=[
            DiscardedContact(id=UUID(c["id"]), email=c["email"])
            for c in (contacts.discarded if contacts else [])
        ],
        aliases_moved=aliases.moved_keys if aliases else [],
        aliases_dropped=aliases.dropped if aliases else [],
        aliases_added=aliases_added,
        reassigned_counts=run.reassigned_counts,
    )


async def find_duplicates(
    session: AsyncSession, tenant_id: UUID, settings: ResolutionSettings
) -> list[DuplicateCandidate]:
    """Account pairs that look like the same company.

    Two strategies: normalized-name similarity above duplicate_similarity_floor,
    and a domain shared between primary domains and aliases.
    """
    accounts = sorted(
        await account_repo.list_for_tenant(session, tenant_id), key=lambda a: (a.name, str(a.id))
    )
    if len(accounts) < 2:
        return []
    alias_domains = await alias_repo.domains_by_account(session, tenant_id)
    summaries = {
        account.id: AccountSummary.from_account(account, alias_domains.get(account.id, []))
        for account in accounts
    }

    pairs: dict[tuple[str, str], DuplicateCandidate] = {}
    for first, second in combinations(accounts, 2):
        similarity = duplicate_similarity(first.normalized_name, second.normalized_name)
        if similarity >= settings.duplicate_similarity_floor:
            pairs[_pair_key(first.id, second.id)] = DuplicateCandidate(
                account_a=summaries[first.id],
                account_b=summaries[second.id],
                similarity=round(similarity, 2),
                match_reason="normalized_name",
            )

    owners_by_domain: dict[str, list[Account]] = {}
    for account in accounts:
        domains = {d.lower() for d in alias_domains.get(account.id, [])}
        if account.domain:
            domains.add(account.domain.lower().strip())
        for domain in sorted(domains):
            owners_by_domain.setdefault(domain, []).append(account)
    for owners in owners_by_domain.values():
        for first, second in combinations(owners, 2):
            key = _pair_key(first.id, second.id)
            if key in pairs:
                continue
            pairs[key] = DuplicateCandidate(
                account_a=summaries[first.id],
                account_b=summaries[second.id],
                similarity=SHARED_DOMAIN_SIMILARITY,
                match_reason="shared_domain",
            )

    return sorted(
        pairs.values(),
        key=lambda c: (-c.similarity, c.account_a.name, c.account_b.name),
    )


def _pair_key(first: UUID, second: UUID) -> tuple[str, str]:
    return tuple(sorted((str(first), str(second))))


async def _account_preview(
    session: AsyncSession, tenant_id: UUID, account: Account, registry: tuple[Dependent, ...]
) -> AccountPreview:
    aliases = await alias_repo.list_for_account(session, tenant_id, account.id)
    contacts = await contact_repo.list_for_account(session, tenant_id, account.id)
    counts = {
        dependent.name: await dependent.count(session, tenant_id, account.id)
        for dependent in registry
    }
    recent = await call_repo.list_for_account(session, tenant_id, account.id, limit=5)
    return AccountPreview(
        account=AccountSummary.from_account(account, [a.domain for a in aliases]),
        call_count=counts.get("calls", 0),
        contact_emails=sorted(c.email for c in contacts),
        dependent_counts=counts,
        recent_calls=[CallBrief.model_validate(call) for call in recent],
    )


async def preview_merge(
    session: AsyncSession,
    tenant_id: UUID,
    source_id: UUID,
    target_id: UUID,
    *,
    registry: tuple[Dependent, ...] = DEPENDENTS,
) -> MergePreview:
    """Side-by-side view of both accounts before a merge. Read-only."""
    if source_id == target_id:
        raise InvalidMerge(
            "Cannot merge an account into itself", details={"account_id": str(source_id)}
        )
    source = await account_repo.get_for_tenant(session, tenant_id, source_id)
    if source is None:
        raise NotFound("Source account not found", details={"account_id": str(source_id)})
    target = await account_repo.get_for_tenant(session, tenant_id, target_id)
    if target is None:
        raise NotFound("Target account not found", details={"account_id": str(target_id)})

    source_preview = await _account_preview(session, tenant_id, source, registry)
    target_preview = await _account_preview(session, tenant_id, target, registry)
    shared = sorted(set(source_preview.contact_emails) & set(target_preview.contact_emails))
    return MergePreview(
        source=source_preview,
        target=target_preview,
        shared_contact_emails=shared,
        contacts_to_discard=len(shared),
    )


async def list_merge_runs(
    session: AsyncSession, tenant_id: UUID, limit: int = 50
) -> list[MergeRunSummary]:
    if limit < 1 or limit > MAX_MERGE_RUNS:
        raise ValidationError(
            f"limit must be between 1 and {MAX_MERGE_RUNS}", details={"limit": limit}
        )
    runs = await merge_run_repo.list_for_tenant(session, tenant_id, limit)
    return [
        MergeRunSummary(
            id=run.id,
            source_account_id=run.source_account_id,
            target_account_id=run.target_account_id,
            initiated_by=run.initiated_by,
            notes=run.notes,
            created_at=run.created_at,
            moved_counts=run.reassigned_counts or {},
        )
        for run in runs
    ]
