"""Merge ledger repository — one row per completed account merge."""
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AccountMergeRun

logger = logging.getLogger(__name__)


async def record(session: AsyncSession, tenant_id: UUID, data: dict) -> AccountMergeRun:
    """Persist a merge run.

    data dict keys: source_account_id, target_account_id, source_snapshot,
    moved_call_ids, moved_contact_ids, discarded_contacts, moved_alias_domains,
    dropped_alias_domains, reassigned_counts, initiated_by, notes
    """
    run = AccountMergeRun(tenant_id=tenant_id, **data)
    session.add(run)
    await session.flush()
    return run


async def list_for_tenant(
    session: AsyncSession, tenant_id: UUID, limit: int = 50
) -> list[AccountMergeRun]:
    """Return the tenant's merge runs, newest first."""
    result = await session.execute(
        select(AccountMergeRun)
        .where(AccountMergeRun.tenant_id == tenant_id)
        .order_by(AccountMergeRun.created_at.desc(), AccountMergeRun.id)
        .limit(limit)
    )
    return list(result.scalars().all())
