"""Account repository — tenant-scoped lookup, locking and search."""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Account, AccountDomainAlias
from db.repositories import like_pattern

logger = logging.getLogger(__name__)


async def get_for_tenant(
    session: AsyncSession,
    tenant_id: UUID,
    account_id: UUID,
    *,
    lock: Optional[str] = None,
) -> Optional[Account]:
    """Return the account if it belongs to the tenant, or None.

    lock: None, "share" (FOR SHARE) or "update" (FOR UPDATE).
    """
    stmt = select(Account).where(
        Account.id == account_id, Account.tenant_id == tenant_id
    )
    if lock == "update":
        stmt = stmt.with_for_update()
    elif lock == "share":
        stmt = stmt.with_for_update(read=True)
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    return result.scalar_one_or_none()


async def lock_pair(
    session: AsyncSession, tenant_id: UUID, first_id: UUID, second_id: UUID
) -> dict[UUID, Optional[Account]]:
    """Lock two account rows FOR UPDATE in a stable order (smaller id first).

    Two merges of the same pair in opposite directions acquire the locks in
    the same order, so they serialize instead of deadlocking.
    """
    locked: dict[UUID, Optional[Account]] = {}
    for account_id in sorted({first_id, second_id}, key=str):
        locked[account_id] = await get_for_tenant(
            session, tenant_id, account_id, lock="update"
        )
    return locked


async def get_by_normalized_name(
    session: AsyncSession, tenant_id: UUID, normalized_name: str
) -> Optional[Account]:
    """Return the first account with this normalized name, or None."""
    result = await session.execute(
        select(Account)
        .where(Account.tenant_id == tenant_id)
        .where(Account.normalized_name == normalized_name)
        .order_by(Account.created_at, Account.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_by_primary_domains(
    session: AsyncSession, tenant_id: UUID, domains: set[str]
) -> list[Account]:
    """Return accounts whose primary domain is one of the given domains.

    Primary domains arrive from CRM sync in any case; the match ignores case.
    """
    domains = {domain.lower().strip() for domain in domains if domain}
    if not domains:
        return []
    result = await session.execute(
        select(Account)
        .where(Account.tenant_id == tenant_id)
        .where(func.lower(Account.domain).in_(sorted(domains)))
        .order_by(Account.id)
    )
    return list(result.scalars().all())


async def list_for_tenant(session: AsyncSession, tenant_id: UUID) -> list[Account]:
    """Return every account of the tenant (input to fuzzy matching)."""
    result = await session.execute(
        select(Account).where(Account.tenant_id == tenant_id).order_by(Account.id)
    )
    return list(result.scalars().all())


async def search(
    session: AsyncSession, tenant_id: UUID, query: str, limit: int
) -> list[Account]:
    """Substring search over name, normalized name, primary domain and aliases.

    An empty query returns the first accounts alphabetically.
    """
    stmt = select(Account).where(Account.tenant_id == tenant_id)
    query = query.strip()
    if query:
        pattern = like_pattern(query)
        alias_match = (
            select(AccountDomainAlias.id)
            .where(AccountDomainAlias.account_id == Account.id)
            .where(AccountDomainAlias.domain.ilike(pattern, escape="\\"))
            .exists()
        )
        stmt = stmt.where(
            or_(
                Account.name.ilike(pattern, escape="\\"),
                Account.normalized_name.ilike(pattern, escape="\\"),
                Account.domain.ilike(pattern, escape="\\"),
                alias_match,
            )
        )
    result = await session.execute(stmt.order_by(Account.name, Account.id).limit(limit))
    return list(result.scalars().all())


async def create(session: AsyncSession, tenant_id: UUID, data: dict) -> Account:
    """Insert a new account.

    data dict keys: name, normalized_name, domain, industry, salesforce_id,
    hubspot_id, last_synced_at
    """
    account = Account(tenant_id=tenant_id, **data)
    session.add(account)
    await session.flush()
    return account


async def update_fields(session: AsyncSession, account_id: UUID, values: dict) -> None:
    """Apply a partial update to one account."""
    if not values:
        return
    await session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(**values, updated_at=datetime.now(timezone.utc))
    )
    await session.flush()


async def delete_account(session: AsyncSession, account_id: UUID) -> int:
    """Delete one account row. Returns the number of rows removed."""
    result = await session.execute(
        delete(Account)
        .where(Account.id == account_id)
        .execution_options(synchronize_session="fetch")
    )
    await session.flush()
    return result.rowcount
