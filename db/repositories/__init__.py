"""Repository layer for the resolution engine.

Every function takes the caller's AsyncSession and never commits; the
transaction boundary belongs to resolution.unit_of_work.

- accounts: get_for_tenant, lock_pair, get_by_normalized_name,
  get_by_primary_domains, list_for_tenant, search, create, update_fields,
  delete_account
- aliases: get_alias_map, get_owner, add_if_absent, list_for_account,
  domains_by_account
- calls: get_for_tenant, list_queue, assign, record_match, dismiss, states_for,
  list_for_account, queue_stats
- contacts: get_by_email, upsert_for_account, list_for_account, delete_ids
- merge_runs: record, list_for_tenant
"""
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(session: AsyncSession, model):
    """Return a dialect insert() that supports on_conflict_do_nothing/update.

    Production runs on PostgreSQL; the test suite runs on SQLite.
    """
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def like_pattern(fragment: str) -> str:
    """Wrap a user-supplied fragment for a LIKE match, escaping wildcards."""
    escaped = (
        fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"


async def repoint_account(
    session: AsyncSession,
    model,
    tenant_id: UUID,
    source_id: UUID,
    target_id: UUID,
    ids: Optional[Iterable[UUID]] = None,
) -> list[UUID]:
    """Move rows of a tenant-owned model from one account to another.

    Only rows currently on source_id are touched; ids narrows that further.
    Returns the ids of the moved rows.
    """
    stmt = update(model).where(
        model.tenant_id == tenant_id, model.account_id == source_id
    )
    if ids is not None:
        stmt = stmt.where(model.id.in_(list(ids)))
    values = {"account_id": target_id}
    if "updated_at" in model.__table__.c:
        values["updated_at"] = datetime.now(timezone.utc)
    result = await session.execute(
        stmt.values(**values)
        .returning(model.id)
        .execution_options(synchronize_session="fetch")
    )
    moved = list(result.scalars().all())
    await session.flush()
    return moved


async def count_for_account(
    session: AsyncSession, model, tenant_id: UUID, account_id: UUID
) -> int:
    """Number of rows of a tenant-owned model that reference the account."""
    result = await session.execute(
        select(func.count())
        .select_from(model)
        .where(model.tenant_id == tenant_id, model.account_id == account_id)
    )
    return result.scalar_one()
