"""Contact repository — the tenant-partitioned email → account map."""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Contact
from db.repositories import insert_for

logger = logging.getLogger(__name__)


def email_lock_statement(tenant_id: UUID, email: str):
    """Transaction-scoped PostgreSQL advisory lock on one (tenant, email) key."""
    key = f"{tenant_id}:{email.lower().strip()}"
    return select(func.pg_advisory_xact_lock(func.hashtext(key)))


async def lock_email(session: AsyncSession, tenant_id: UUID, email: str) -> None:
    """Serialize contact writes for one email until the transaction ends.

    Contacts are unique per (tenant, account, email), so the database alone
    cannot stop two transactions from attaching one email to two accounts.
    SQLite (tests) runs one writer at a time and skips the lock.
    """
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        return
    await session.execute(email_lock_statement(tenant_id, email))


async def get_by_email(
    session: AsyncSession, tenant_id: UUID, email: str
) -> list[Contact]:
    """Return the contacts with this email in the tenant (normally zero or one)."""
    result = await session.execute(
        select(Contact)
        .where(Contact.tenant_id == tenant_id)
        .where(Contact.email == email.lower().strip())
        .order_by(Contact.created_at, Contact.id)
    )
    return list(result.scalars().all())


async def upsert_for_account(
    session: AsyncSession,
    tenant_id: UUID,
    account_id: UUID,
    email: str,
    name: Optional[str] = None,
) -> tuple[Optional[Contact], str]:
    """Attach an email to an account unless the tenant already knows it elsewhere.

    Returns (contact, status) with status one of:
      "created"   new contact on this account
      "updated"   existing contact on this account, name filled in
      "unchanged" existing contact on this account, nothing to change
      "conflict"  email belongs to a different account; nothing written
    """
    email = email.lower().strip()
    await lock_email(session, tenant_id, email)
    existing = await get_by_email(session, tenant_id, email)
    for contact in existing:
        if contact.account_id == account_id:
            if name and not contact.name:
                contact.name = name
                await session.flush()
                return contact, "updated"
            return contact, "unchanged"
    if existing:
        return existing[0], "conflict"

    stmt = (
        insert_for(session, Contact)
        .values(
            tenant_id=tenant_id,
            account_id=account_id,
            email=email,
            email_domain=email.rsplit("@", 1)[-1],
            name=name,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "account_id", "email"])
    )
    await session.execute(stmt)
    await session.flush()
    created = await get_by_email(session, tenant_id, email)
    own = next((c for c in created if c.account_id == account_id), None)
    return own, "created"


async def list_for_account(
    session: AsyncSession, tenant_id: UUID, account_id: UUID
) -> list[Contact]:
    """Return the account's contacts, oldest first."""
    result = await session.execute(
        select(Contact)
        .where(Contact.tenant_id == tenant_id)
        .where(Contact.account_id == account_id)
        .order_by(Contact.created_at, Contact.id)
    )
    return list(result.scalars().all())


async def delete_ids(session: AsyncSession, contact_ids: list[UUID]) -> int:
    """Delete contacts by id. Returns the number of rows removed."""
    if not contact_ids:
        return 0
    result = await session.execute(
        delete(Contact)
        .where(Contact.id.in_(contact_ids))
        .execution_options(synchronize_session="fetch")
    )
    await session.flush()
    return result.rowcount
