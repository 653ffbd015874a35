"""Domain alias repository — the tenant-partitioned domain → account map."""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AccountDomainAlias
from db.repositories import insert_for

logger = logging.getLogger(__name__)


async def get_alias_map(
    session: AsyncSession, tenant_id: UUID, domains: Optional[Iterable[str]] = None
) -> dict[str, UUID]:
    """Return {domain: account_id} for the tenant, optionally limited to domains.

    Keys are lower-cased; CRM-synced aliases may be stored in any case.
    """
    stmt = select(AccountDomainAlias.domain, AccountDomainAlias.account_id).where(
        AccountDomainAlias.tenant_id == tenant_id
    )
    if domains is not None:
        domains = sorted({d.lower().strip() for d in domains if d})
        if not domains:
            return {}
        stmt = stmt.where(func.lower(AccountDomainAlias.domain).in_(domains))
    result = await session.execute(stmt.order_by(AccountDomainAlias.id))
    return {domain.lower(): account_id for domain, account_id in result.all()}


async def get_owner(
    session: AsyncSession, tenant_id: UUID, domain: str
) -> Optional[AccountDomainAlias]:
    """Return the alias row for this domain (case-insensitive), or None."""
    result = await session.execute(
        select(AccountDomainAlias)
        .where(AccountDomainAlias.tenant_id == tenant_id)
        .where(func.lower(AccountDomainAlias.domain) == domain.lower().strip())
        .order_by(AccountDomainAlias.id)
        .limit(1)
    )
    return result.scalars().first()


async def add_if_absent(
    session: AsyncSession,
    tenant_id: UUID,
    account_id: UUID,
    domain: str,
    source: str,
) -> tuple[AccountDomainAlias, bool]:
    """Insert an alias unless the domain is already aliased in the tenant.

    Never overwrites an existing alias. Returns (row, created); when created
    is False the returned row is the existing one and may point at a
    different account.
    """
    domain = domain.lower().strip()
    existing = await get_owner(session, tenant_id, domain)
    if existing is not None:
        return existing, False

    # A concurrent transaction may insert the same domain first; the unique
    # constraint decides and we report whichever row won.
    stmt = (
        insert_for(session, AccountDomainAlias)
        .values(tenant_id=tenant_id, account_id=account_id, domain=domain, source=source)
        .on_conflict_do_nothing(index_elements=["tenant_id", "domain"])
    )
    await session.execute(stmt)
    await session.flush()
    row = await get_owner(session, tenant_id, domain)
    return row, row is not None and row.account_id == account_id


async def list_for_account(
    session: AsyncSession, tenant_id: UUID, account_id: UUID
) -> list[AccountDomainAlias]:
    """Return every alias row pointing at the account."""
    result = await session.execute(
        select(AccountDomainAlias)
        .where(AccountDomainAlias.tenant_id == tenant_id)
        .where(AccountDomainAlias.account_id == account_id)
        .order_by(AccountDomainAlias.domain)
    )
    return list(result.scalars().all())


async def domains_by_account(
    session: AsyncSession,
    tenant_id: UUID,
    account_ids: Optional[Iterable[UUID]] = None,
) -> dict[UUID, list[str]]:
    """Return {account_id: [domains]} for the tenant, optionally for some accounts."""
    stmt = (
        select(AccountDomainAlias.account_id, AccountDomainAlias.domain)
        .where(AccountDomainAlias.tenant_id == tenant_id)
        .order_by(AccountDomainAlias.domain)
    )
    if account_ids is not None:
        stmt = stmt.where(AccountDomainAlias.account_id.in_(list(account_ids)))
    result = await session.execute(stmt)
    grouped: dict[UUID, list[str]] = {}
    for account_id, domain in result.all():
        grouped.setdefault(account_id, []).append(domain)
    return grouped
