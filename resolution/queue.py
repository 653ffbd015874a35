"""Review queue: paging, statistics and account search for human reviewers."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Sequence, Union
from uuid import UUID

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession

import db.repositories.accounts as account_repo
import db.repositories.aliases as alias_repo
import db.repositories.calls as call_repo
from db.models import Call
from resolution.config import ResolutionSettings
from resolution.errors import ValidationError
from resolution.matching import compute_candidates, eligible_domains
from schemas.resolution import (
    AccountSummary,
    ConfidenceBucket,
    MatchCandidate,
    ParticipantView,
    QueueItem,
    QueuePage,
    QueueQuery,
    QueueStats,
)

logger = logging.getLogger(__name__)


def parse_query(
    query: Union[QueueQuery, Mapping[str, Any], None], settings: ResolutionSettings
) -> QueueQuery:
    """Validate raw queue parameters, raising ValidationError on bad input."""
    if isinstance(query, QueueQuery):
        parsed = query
    else:
        try:
            parsed = QueueQuery.model_validate(dict(query or {}))
        except pydantic.ValidationError as exc:
            raise ValidationError(
                "Invalid queue query",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc
    if parsed.page_size > settings.max_page_size:
        raise ValidationError(
            f"page_size may not exceed {settings.max_page_size}",
            details={"page_size": parsed.page_size},
        )
    return parsed


async def candidates_for_calls(
    session: AsyncSession,
    tenant_id: UUID,
    calls: Sequence[Call],
    settings: ResolutionSettings,
) -> dict[UUID, list[MatchCandidate]]:
    """Run the matching engine for each call against the tenant's current data."""
    if not calls:
        return {}
    domains: set[str] = set()
    for call in calls:
        domains.update(eligible_domains(call.participants, settings))
    aliases = await alias_repo.get_alias_map(session, tenant_id, domains)
    accounts = await account_repo.list_for_tenant(session, tenant_id)
    return {
        call.id: compute_candidates(
            call.participants,
            aliases=aliases,
            accounts=accounts,
            settings=settings,
            title=call.title,
        )
        for call in calls
    }


async def list_queue(
    session: AsyncSession,
    tenant_id: UUID,
    query: Union[QueueQuery, Mapping[str, Any], None],
    settings: ResolutionSettings,
) -> QueuePage:
    """One page of unresolved, undismissed calls with fresh suggestions."""
    query = parse_query(query, settings)
    calls, total = await call_repo.list_queue(
        session,
        tenant_id,
        offset=(query.page - 1) * query.page_size,
        limit=query.page_size,
        search=query.search,
        sort_by=query.sort_by,
        sort_order=query.sort_order,
    )
    suggestions = await candidates_for_calls(session, tenant_id, calls, settings)
    items = [
        QueueItem(
            id=call.id,
            title=call.title,
            provider=call.provider,
            occurred_at=call.occurred_at,
            match_confidence=call.match_confidence,
            match_method=call.match_method,
            participants=[ParticipantView.model_validate(p) for p in call.participants],
            candidates=suggestions[call.id][: settings.queue_suggestion_limit],
        )
        for call in calls
    ]
    return QueuePage(items=items, total=total, page=query.page, page_size=query.page_size)


async def get_queue_stats(
    session: AsyncSession,
    tenant_id: UUID,
    settings: ResolutionSettings,
    now: Optional[datetime] = None,
) -> QueueStats:
    now = now or datetime.now(timezone.utc)
    stats = await call_repo.queue_stats(
        session,
        tenant_id,
        resolved_since=now - timedelta(hours=settings.resolved_window_hours),
        certain_threshold=settings.auto_resolve_threshold,
    )
    buckets = [
        ConfidenceBucket(range_start=start, range_end=end, count=count)
        for (start, end), count in zip(call_repo.CONFIDENCE_BUCKETS, stats.pop("bucket_counts"))
    ]
    return QueueStats(
        **stats,
        resolved_window_hours=settings.resolved_window_hours,
        confidence_buckets=buckets,
    )


async def search_accounts(
    session: AsyncSession,
    tenant_id: UUID,
    query: Optional[str],
    limit: int,
    settings: ResolutionSettings,
) -> list[AccountSummary]:
    """Find accounts by name, normalized name, primary domain or alias domain."""
    if limit < 1 or limit > settings.max_search_limit:
        raise ValidationError(
            f"limit must be between 1 and {settings.max_search_limit}",
            details={"limit": limit},
        )
    if query is not None and len(query) > 200:
        raise ValidationError("query is too long", details={"length": len(query)})
    accounts = await account_repo.search(session, tenant_id, query or "", limit)
    aliases = await alias_repo.domains_by_account(
        session, tenant_id, [account.id for account in accounts]
    )
    return [
        AccountSummary.from_account(account, aliases.get(account.id, []))
        for account in accounts
    ]
