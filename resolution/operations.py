"""Resolution operations: assign calls to accounts and learn from the decision.

Each function runs inside the caller's transaction and raises a
ResolutionError subclass on failure; the caller's unit of work rolls back.
"""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

import db.repositories.accounts as account_repo
import db.repositories.aliases as alias_repo
import db.repositories.calls as call_repo
import db.repositories.contacts as contact_repo
from db.models import Account, Call
from resolution.config import ResolutionSettings
from resolution.errors import (
    AlreadyResolved,
    Conflict,
    DuplicateAccount,
    NotFound,
    ValidationError,
)
from resolution.matching import best_match, eligible_domains, is_auto_resolvable
from resolution.normalize import (
    collapse_whitespace,
    email_domain,
    normalize_company_name,
    normalize_email,
)
from resolution.queue import candidates_for_calls
from schemas.resolution import (
    AccountSummary,
    AliasConflict,
    AutoResolveResult,
    BulkResolveResult,
    ContactConflict,
    CreateAccountResult,
    DismissResult,
    ResolveResult,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _validate_batch(call_ids: Iterable[UUID], settings: ResolutionSettings) -> list[UUID]:
    call_ids = list(call_ids)
    if not call_ids:
        raise ValidationError("call_ids must not be empty")
    if len(call_ids) > settings.max_batch_size:
        raise ValidationError(
            f"At most {settings.max_batch_size} calls per request",
            details={"count": len(call_ids)},
        )
    return call_ids


def _clean_domain(domain: Optional[str]) -> Optional[str]:
    if domain is None:
        return None
    domain = domain.strip().lower().strip(".")
    if not domain:
        return None
    if "." not in domain or "@" in domain or " " in domain:
        raise ValidationError("Invalid domain", details={"domain": domain})
    return domain


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------


def _contact_emails(call: Call, settings: ResolutionSettings) -> list[tuple[str, Optional[str]]]:
    """(email, name) of every external participant, first occurrence wins.

    Free-mail addresses are kept: the person still belongs to the account
    even though their domain says nothing about it.
    """
    internal = set(settings.internal_domains)
    for participant in call.participants:
        if participant.is_host and participant.email:
            host_domain = email_domain(participant.email)
            if host_domain:
                internal.add(host_domain)

    seen: dict[str, Optional[str]] = {}
    for participant in call.participants:
        if participant.is_host or not participant.email:
            continue
        email = normalize_email(participant.email)
        if email is None or email in seen:
            continue
        if email.rsplit("@", 1)[1] in internal:
            continue
        seen[email] = participant.name
    return list(seen.items())


async def _learn_contacts(
    session: AsyncSession,
    tenant_id: UUID,
    account_id: UUID,
    call: Call,
    settings: ResolutionSettings,
) -> tuple[list[str], list[ContactConflict]]:
    created: list[str] = []
    conflicts: list[ContactConflict] = []
    # Per-email locks are always taken in email order.
    for email, name in sorted(_contact_emails(call, settings)):
        contact, status = await contact_repo.upsert_for_account(
            session, tenant_id, account_id, email, name
        )
        if status == "created":
            created.append(email)
        elif status == "conflict":
            logger.info(
                "Contact %s already belongs to account %s; left unchanged",
                email, contact.account_id,
            )
            conflicts.append(ContactConflict(email=email, existing_account_id=contact.account_id))
    return created, conflicts


async def _learn_aliases(
    session: AsyncSession,
    tenant_id: UUID,
    account_id: UUID,
    call: Call,
    settings: ResolutionSettings,
) -> tuple[list[str], list[AliasConflict]]:
    """Alias every eligible participant domain to the account when it is free."""
    added: list[str] = []
    conflicts: list[AliasConflict] = []
    domains = eligible_domains(call.participants, settings)
    primary_owners = {
        account.domain.lower().strip(): account.id
        for account in await account_repo.get_by_primary_domains(session, tenant_id, set(domains))
        if account.id != account_id
    }
    for domain in domains:
        if domain in primary_owners:
            owner_id = primary_owners[domain]
        else:
            alias, created = await alias_repo.add_if_absent(
                session, tenant_id, account_id, domain, "manual_resolution"
            )
            if created:
                added.append(domain)
                continue
            owner_id = alias.account_id
            if owner_id == account_id:
                continue
        logger.warning(
            "Domain %s is already mapped to account %s; not aliasing it to %s",
            domain, owner_id, account_id,
        )
        conflicts.append(AliasConflict(domain=domain, existing_account_id=owner_id))
    return added, conflicts


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def resolve_call(
    session: AsyncSession,
    tenant_id: UUID,
    call_id: UUID,
    account_id: UUID,
    settings: ResolutionSettings,
) -> ResolveResult:
    """Manually assign a call to an account and learn aliases and contacts."""
    call = await call_repo.get_for_tenant(session, tenant_id, call_id, lock=True)
    if call is None:
        raise NotFound("Call not found", details={"call_id": str(call_id)})
    # FOR SHARE holds off a concurrent merge deleting this account.
    account = await account_repo.get_for_tenant(session, tenant_id, account_id, lock="share")
    if account is None:
        raise NotFound("Account not found", details={"account_id": str(account_id)})
    if call.account_id is not None:
        raise AlreadyResolved(
            "Call is already resolved",
            details={"call_id": str(call_id), "account_id": str(call.account_id)},
        )

    await call_repo.assign(session, call, account.id, confidence=None, method="manual")
    contacts_created, contact_conflicts = await _learn_contacts(
        session, tenant_id, account.id, call, settings
    )
    aliases_added, alias_conflicts = await _learn_aliases(
        session, tenant_id, account.id, call, settings
    )
    logger.info(
        "Resolved call %s to account %s (%d aliases, %d contacts learned)",
        call.id, account.id, len(aliases_added), len(contacts_created),
    )
    return ResolveResult(
        call_id=call.id,
        account_id=account.id,
        aliases_added=aliases_added,
        alias_conflicts=alias_conflicts,
        contacts_created=contacts_created,
        contact_conflicts=contact_conflicts,
    )


async def bulk_resolve(
    session: AsyncSession,
    tenant_id: UUID,
    call_ids: Iterable[UUID],
    account_id: UUID,
    settings: ResolutionSettings,
) -> BulkResolveResult:
    """Resolve several calls to one account. Any failure fails the whole batch."""
    call_ids = _validate_batch(call_ids, settings)
    if len(set(call_ids)) != len(call_ids):
        raise ValidationError("call_ids must be unique")
    results = [
        await resolve_call(session, tenant_id, call_id, account_id, settings)
        for call_id in call_ids
    ]
    return BulkResolveResult(account_id=account_id, resolved=len(results), results=results)


async def dismiss_calls(
    session: AsyncSession,
    tenant_id: UUID,
    call_ids: Iterable[UUID],
    settings: ResolutionSettings,
) -> DismissResult:
    """Hide queued calls from the queue. Resolved calls are never dismissed."""
    call_ids = list(dict.fromkeys(_validate_batch(call_ids, settings)))
    states = await call_repo.states_for(session, tenant_id, call_ids)
    queued = [call_id for call_id in call_ids if states.get(call_id) == "queued"]
    dismissed = set(await call_repo.dismiss(session, tenant_id, queued))

    result = DismissResult(dismissed=[c for c in call_ids if c in dismissed])
    for call_id in call_ids:
        state = states.get(call_id)
        if state is None:
            result.not_found.append(call_id)
        elif state == "resolved":
            result.skipped_resolved.append(call_id)
        elif state == "dismissed":
            result.already_dismissed.append(call_id)
        elif call_id not in dismissed:
            # Resolved by a concurrent transaction between the read and the update.
            result.skipped_resolved.append(call_id)
    return result


async def create_account_from_call(
    session: AsyncSession,
    tenant_id: UUID,
    call_id: UUID,
    name: str,
    domain: Optional[str],
    settings: ResolutionSettings,
) -> CreateAccountResult:
    """Create an account for a call that matches nothing, then resolve the call to it."""
    name = collapse_whitespace(name or "")
    if not name:
        raise ValidationError("Account name is required")
    if len(name) > 255:
        raise ValidationError("Account name is too long", details={"length": len(name)})
    domain = _clean_domain(domain)
    if domain and domain in settings.free_email_domains | settings.internal_domains:
        raise ValidationError(
            "Free-mail and internal domains cannot identify an account",
            details={"domain": domain},
        )

    call = await call_repo.get_for_tenant(session, tenant_id, call_id)
    if call is None:
        raise NotFound("Call not found", details={"call_id": str(call_id)})
    if call.account_id is not None:
        raise AlreadyResolved(
            "Call is already resolved",
            details={"call_id": str(call_id), "account_id": str(call.account_id)},
        )

    normalized_name = normalize_company_name(name)
    existing = await account_repo.get_by_normalized_name(session, tenant_id, normalized_name)
    if existing is not None:
        raise DuplicateAccount(
            f"An account named {existing.name!r} already exists",
            details={"existing_account_id": str(existing.id)},
        )
    if domain:
        await _ensure_domain_free(session, tenant_id, domain)

    account = await account_repo.create(
        session,
        tenant_id,
        {"name": name, "normalized_name": normalized_name, "domain": domain},
    )
    aliases = []
    if domain:
        await alias_repo.add_if_absent(session, tenant_id, account.id, domain, "account_creation")
        aliases.append(domain)
    logger.info("Created account %s (%s) from call %s", account.id, name, call_id)

    resolution = await resolve_call(session, tenant_id, call_id, account.id, settings)
    aliases.extend(resolution.aliases_added)
    return CreateAccountResult(
        account=AccountSummary.from_account(account, aliases),
        resolution=resolution,
    )


async def _ensure_domain_free(session: AsyncSession, tenant_id: UUID, domain: str) -> None:
    alias = await alias_repo.get_owner(session, tenant_id, domain)
    if alias is not None:
        raise Conflict(
            f"Domain {domain} is already mapped to another account",
            details={"domain": domain, "existing_account_id": str(alias.account_id)},
        )
    owners = await account_repo.get_by_primary_domains(session, tenant_id, {domain})
    if owners:
        raise Conflict(
            f"Domain {domain} is the primary domain of another account",
            details={"domain": domain, "existing_account_id": str(owners[0].id)},
        )


async def auto_resolve_call(
    session: AsyncSession,
    tenant_id: UUID,
    call_id: UUID,
    settings: ResolutionSettings,
) -> AutoResolveResult:
    """Ingestion entry point: assign a call automatically or leave it queued.

    Only an unambiguous exact match is assigned. Contacts are learned, aliases
    are not; aliases grow only from human decisions.
    """
    call = await call_repo.get_for_tenant(session, tenant_id, call_id, lock=True)
    if call is None:
        raise NotFound("Call not found", details={"call_id": str(call_id)})
    if call.state != "queued":
        return _auto_result(call, [])

    candidates = (await candidates_for_calls(session, tenant_id, [call], settings))[call.id]
    account: Optional[Account] = None
    if is_auto_resolvable(candidates, settings):
        account = await account_repo.get_for_tenant(
            session, tenant_id, candidates[0].account_id, lock="share"
        )

    if account is not None:
        top = candidates[0]
        await call_repo.assign(
            session, call, account.id, confidence=top.confidence, method=top.match_method
        )
        await _learn_contacts(session, tenant_id, account.id, call, settings)
        logger.info("Auto-resolved call %s to account %s via %s", call.id, account.id, top.matched_on)
    else:
        confidence, method = best_match(candidates)
        await call_repo.record_match(session, call, confidence=confidence, method=method)
        logger.debug("Call %s queued for review (%d candidates)", call.id, len(candidates))
    return _auto_result(call, candidates)


def _auto_result(call: Call, candidates) -> AutoResolveResult:
    return AutoResolveResult(
        call_id=call.id,
        state=call.state,
        account_id=call.account_id,
        match_confidence=call.match_confidence,
        match_method=call.match_method,
        candidates=candidates,
    )
