"""Call repository — queue queries, assignment, dismissal and statistics."""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.models import Call, CallParticipant
from db.repositories import like_pattern

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "occurred_at": Call.occurred_at,
    "match_confidence": Call.match_confidence,
}

CONFIDENCE_BUCKETS = ((0.0, 0.2), (0.2, 0.4), (0.4, 0.6), (0.6, 0.8), (0.8, 1.0))


def _is_queued():
    return and_(Call.account_id.is_(None), Call.dismissed == False)


async def get_for_tenant(
    session: AsyncSession,
    tenant_id: UUID,
    call_id: UUID,
    *,
    lock: bool = False,
) -> Optional[Call]:
    """Return the call with its participants if it belongs to the tenant."""
    stmt = (
        select(Call)
        .where(Call.id == call_id, Call.tenant_id == tenant_id)
        .options(selectinload(Call.participants))
    )
    if lock:
        stmt = stmt.with_for_update(of=Call)
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    return result.scalar_one_or_none()


async def list_queue(
    session: AsyncSession,
    tenant_id: UUID,
    *,
    offset: int,
    limit: int,
    search: Optional[str] = None,
    sort_by: str = "occurred_at",
    sort_order: str = "desc",
) -> tuple[list[Call], int]:
    """Return one page of queued calls (no account, not dismissed) and the total.

    Ties in the sort key are broken by call id ascending so pages are stable.
    """
    conditions = [Call.tenant_id == tenant_id, _is_queued()]
    if search and search.strip():
        pattern = like_pattern(search.strip())
        participant_match = (
            select(CallParticipant.id)
            .where(CallParticipant.call_id == Call.id)
            .where(
                or_(
                    CallParticipant.email.ilike(pattern, escape="\\"),
                    CallParticipant.name.ilike(pattern, escape="\\"),
                )
            )
            .exists()
        )
        conditions.append(
            or_(Call.title.ilike(pattern, escape="\\"), participant_match)
        )

    total = (
        await session.execute(select(func.count()).select_from(Call).where(*conditions))
    ).scalar_one()

    column = _SORT_COLUMNS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    result = await session.execute(
        select(Call)
        .where(*conditions)
        .options(selectinload(Call.participants))
        .order_by(ordering.nulls_last(), Call.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def assign(
    session: AsyncSession,
    call: Call,
    account_id: UUID,
    *,
    confidence: Optional[float],
    method: str,
) -> Call:
    """Attach a call to an account. A resolved call is never dismissed."""
    call.account_id = account_id
    call.match_confidence = confidence
    call.match_method = method
    call.dismissed = False
    call.dismissed_at = None
    call.resolved_at = datetime.now(timezone.utc)
    await session.flush()
    return call


async def record_match(
    session: AsyncSession, call: Call, *, confidence: Optional[float], method: str
) -> Call:
    """Store the matching engine's best guess on a call that stays queued."""
    call.match_confidence = confidence
    call.match_method = method
    await session.flush()
    return call


async def dismiss(
    session: AsyncSession, tenant_id: UUID, call_ids: Iterable[UUID]
) -> list[UUID]:
    """Hide queued calls from the queue. Returns the ids actually dismissed."""
    call_ids = list(call_ids)
    if not call_ids:
        return []
    result = await session.execute(
        update(Call)
        .where(Call.tenant_id == tenant_id)
        .where(Call.id.in_(call_ids))
        .where(_is_queued())
        .values(dismissed=True, dismissed_at=datetime.now(timezone.utc))
        .returning(Call.id)
        .execution_options(synchronize_session="fetch")
    )
    dismissed = list(result.scalars().all())
    await session.flush()
    if dismissed:
        logger.info("Dismissed %d calls for tenant %s", len(dismissed), tenant_id)
    return dismissed


async def states_for(
    session: AsyncSession, tenant_id: UUID, call_ids: Iterable[UUID]
) -> dict[UUID, str]:
    """Return {call_id: state} for the tenant's calls among call_ids."""
    call_ids = list(call_ids)
    if not call_ids:
        return {}
    result = await session.execute(
        select(Call.id, Call.account_id, Call.dismissed)
        .where(Call.tenant_id == tenant_id)
        .where(Call.id.in_(call_ids))
    )
    states = {}
    for call_id, account_id, dismissed in result.all():
        if account_id is not None:
            states[call_id] = "resolved"
        else:
            states[call_id] = "dismissed" if dismissed else "queued"
    return states


async def list_for_account(
    session: AsyncSession, tenant_id: UUID, account_id: UUID, limit: int = 10
) -> list[Call]:
    """Most recent calls of an account."""
    result = await session.execute(
        select(Call)
        .where(Call.tenant_id == tenant_id, Call.account_id == account_id)
        .order_by(Call.occurred_at.desc(), Call.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def queue_stats(
    session: AsyncSession,
    tenant_id: UUID,
    *,
    resolved_since: datetime,
    certain_threshold: float,
) -> dict:
    """Aggregate queue counts and the confidence distribution of active entries.

    Confidence aggregates only consider queued calls (dismissed calls are
    excluded) that carry a confidence.
    """
    queued = _is_queued()
    scored = and_(queued, Call.match_confidence.is_not(None))

    def _count(condition):
        return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

    active_confidence = case((scored, Call.match_confidence))
    row = (
        await session.execute(
            select(
                _count(queued).label("queued"),
                _count(and_(queued, Call.match_confidence.is_(None))).label("no_match"),
                _count(and_(scored, Call.match_confidence < certain_threshold)).label(
                    "low_confidence"
                ),
                _count(and_(scored, Call.match_confidence >= certain_threshold)).label(
                    "ambiguous"
                ),
                _count(and_(Call.account_id.is_(None), Call.dismissed == True)).label(
                    "dismissed"
                ),
                _count(
                    and_(Call.account_id.is_not(None), Call.resolved_at >= resolved_since)
                ).label("resolved_recently"),
                func.avg(active_confidence).label("average_confidence"),
                func.min(active_confidence).label("min_confidence"),
                func.max(active_confidence).label("max_confidence"),
            ).where(Call.tenant_id == tenant_id)
        )
    ).one()

    bucket = case(
        *[
            (Call.match_confidence < upper, index)
            for index, (_, upper) in enumerate(CONFIDENCE_BUCKETS[:-1])
        ],
        else_=len(CONFIDENCE_BUCKETS) - 1,
    )
    bucket_rows = await session.execute(
        select(bucket.label("bucket"), func.count())
        .where(Call.tenant_id == tenant_id)
        .where(scored)
        .group_by("bucket")
    )
    bucket_counts = {int(index): count for index, count in bucket_rows.all()}

    return {
        "queued": int(row.queued),
        "no_match": int(row.no_match),
        "low_confidence": int(row.low_confidence),
        "ambiguous": int(row.ambiguous),
        "dismissed": int(row.dismissed),
        "resolved_recently": int(row.resolved_recently),
        "average_confidence": (
            float(row.average_confidence) if row.average_confidence is not None else None
        ),
        "min_confidence": (
            float(row.min_confidence) if row.min_confidence is not None else None
        ),
        "max_confidence": (
            float(row.max_confidence) if row.max_confidence is not None else None
        ),
        "bucket_counts": [bucket_counts.get(i, 0) for i in range(len(CONFIDENCE_BUCKETS))],
    }
