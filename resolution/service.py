"""ResolutionService: the public API of the resolution engine.

Every method is one unit of work: it opens a session, runs one operation,
commits, and only then notifies the optional notifier. Methods take the
tenant id first and return pydantic payloads; failures raise ResolutionError
subclasses.

Usage:
    service = ResolutionService()
    page = await service.list_queue(tenant_id, {"page": 1, "search": "acme"})
    await service.resolve_call(tenant_id, call_id, account_id)
"""
import logging
import uuid
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.connection import get_session_factory
from resolution import merge, operations, queue
from resolution.config import ResolutionSettings, get_settings
from resolution.errors import ValidationError
from resolution.unit_of_work import UnitOfWork, unit_of_work
from schemas.resolution import (
    AccountSummary,
    AutoResolveResult,
    BulkResolveResult,
    CreateAccountResult,
    DismissResult,
    DuplicateCandidate,
    MergePreview,
    MergeResult,
    MergeRunSummary,
    QueuePage,
    QueueQuery,
    QueueStats,
    ResolveResult,
)

logger = logging.getLogger(__name__)

# notifier(event_name, payload) is awaited after the transaction commits.
Notifier = Callable[[str, dict[str, Any]], Awaitable[Any]]
IdLike = Union[uuid.UUID, str]


def as_uuid(value: IdLike, field: str) -> uuid.UUID:
    """Coerce a UUID or its string form, raising ValidationError otherwise."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError) as exc:
        raise ValidationError(f"{field} is not a valid id", details={field: str(value)}) from exc


class ResolutionService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[ResolutionSettings] = None,
        notifier: Optional[Notifier] = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self._notifier = notifier

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def _notify(self, uow: UnitOfWork, event: str, payload: BaseModel) -> None:
        if self._notifier is not None:
            uow.after_commit(self._notifier, event, payload.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Review queue
    # ------------------------------------------------------------------

    async def list_queue(
        self,
        tenant_id: IdLike,
        query: Union[QueueQuery, Mapping[str, Any], None] = None,
    ) -> QueuePage:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        async with unit_of_work(self.session_factory) as uow:
            return await queue.list_queue(uow.session, tenant_id, query, self.settings)

    async def get_queue_stats(self, tenant_id: IdLike) -> QueueStats:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        async with unit_of_work(self.session_factory) as uow:
            return await queue.get_queue_stats(uow.session, tenant_id, self.settings)

    async def search_accounts(
        self, tenant_id: IdLike, query: Optional[str] = None, limit: int = 20
    ) -> list[AccountSummary]:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        async with unit_of_work(self.session_factory) as uow:
            return await queue.search_accounts(
                uow.session, tenant_id, query, limit, self.settings
            )

    # ------------------------------------------------------------------
    # Resolution operations
    # ------------------------------------------------------------------

    async def resolve_call(
        self, tenant_id: IdLike, call_id: IdLike, account_id: IdLike
    ) -> ResolveResult:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        call_id = as_uuid(call_id, "call_id")
        account_id = as_uuid(account_id, "account_id")
        async with unit_of_work(self.session_factory) as uow:
            result = await operations.resolve_call(
                uow.session, tenant_id, call_id, account_id, self.settings
            )
            self._notify(uow, "call.resolved", result)
        return result

    async def bulk_resolve(
        self, tenant_id: IdLike, call_ids: Iterable[IdLike], account_id: IdLike
    ) -> BulkResolveResult:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        ids = [as_uuid(call_id, "call_ids") for call_id in call_ids]
        account_id = as_uuid(account_id, "account_id")
        async with unit_of_work(self.session_factory) as uow:
            result = await operations.bulk_resolve(
                uow.session, tenant_id, ids, account_id, self.settings
            )
            self._notify(uow, "calls.resolved", result)
        return result

    async def dismiss_calls(
        self, tenant_id: IdLike, call_ids: Iterable[IdLike]
    ) -> DismissResult:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        ids = [as_uuid(call_id, "call_ids") for call_id in call_ids]
        async with unit_of_work(self.session_factory) as uow:
            result = await operations.dismiss_calls(uow.session, tenant_id, ids, self.settings)
            if result.dismissed:
                self._notify(uow, "calls.dismissed", result)
        return result

    async def create_account_from_call(
        self,
        tenant_id: IdLike,
        call_id: IdLike,
        name: str,
        domain: Optional[str] = None,
    ) -> CreateAccountResult:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        call_id = as_uuid(call_id, "call_id")
        async with unit_of_work(self.session_factory) as uow:
            result = await operations.create_account_from_call(
                uow.session, tenant_id, call_id, name, domain, self.settings
            )
            self._notify(uow, "account.created", result)
        return result

    async def auto_resolve_call(self, tenant_id: IdLike, call_id: IdLike) -> AutoResolveResult:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        call_id = as_uuid(call_id, "call_id")
        async with unit_of_work(self.session_factory) as uow:
            result = await operations.auto_resolve_call(
                uow.session, tenant_id, call_id, self.settings
            )
            if result.state == "resolved" and result.candidates:
                self._notify(uow, "call.auto_resolved", result)
        return result

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge_accounts(
        self,
        tenant_id: IdLike,
        source_id: IdLike,
        target_id: IdLike,
        initiated_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MergeResult:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        source_id = as_uuid(source_id, "source_id")
        target_id = as_uuid(target_id, "target_id")
        async with unit_of_work(self.session_factory) as uow:
            result = await merge.merge_accounts(
                uow.session,
                tenant_id,
                source_id,
                target_id,
                initiated_by=initiated_by,
                notes=notes,
            )
            self._notify(uow, "account.merged", result)
        return result

    async def find_duplicates(self, tenant_id: IdLike) -> list[DuplicateCandidate]:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        async with unit_of_work(self.session_factory) as uow:
            return await merge.find_duplicates(uow.session, tenant_id, self.settings)

    async def preview_merge(
        self, tenant_id: IdLike, source_id: IdLike, target_id: IdLike
    ) -> MergePreview:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        source_id = as_uuid(source_id, "source_id")
        target_id = as_uuid(target_id, "target_id")
        async with unit_of_work(self.session_factory) as uow:
            return await merge.preview_merge(uow.session, tenant_id, source_id, target_id)

    async def list_merge_runs(self, tenant_id: IdLike, limit: int = 50) -> list[MergeRunSummary]:
        tenant_id = as_uuid(tenant_id, "tenant_id")
        async with unit_of_work(self.session_factory) as uow:
            return await merge.list_merge_runs(uow.session, tenant_id, limit)
