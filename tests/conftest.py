"""Shared fixtures: an in-memory SQLite database standing in for PostgreSQL.

The crm schema is translated away so the same models create plain SQLite
tables. Row locks are no-ops on SQLite; everything else (constraints,
RETURNING, ON CONFLICT) behaves as in production.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from db.connection import make_session_factory
from db.models import (
    Account,
    AccountDomainAlias,
    Base,
    Call,
    CallParticipant,
    Contact,
    CrmEvent,
    LandingPage,
    Story,
)
from resolution.config import ResolutionSettings
from resolution.normalize import normalize_company_name
from resolution.service import ResolutionService

TENANT = uuid.UUID("00000000-0000-0000-0000-00000000a001")
OTHER_TENANT = uuid.UUID("00000000-0000-0000-0000-00000000b002")
HOST_EMAIL = "rep@ourco.example"
BASE_TIME = datetime(2026, 9, 1, 15, 0, tzinfo=timezone.utc)


class Seeder:
    """Writes fixture rows, one committed transaction per helper call.

    Helpers return ids rather than ORM objects so tests never touch
    instances from a closed session.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._calls = 0

    async def _add(self, row):
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        return row.id

    async def account(
        self,
        name: str,
        domain: Optional[str] = None,
        *,
        tenant_id: uuid.UUID = TENANT,
        last_synced_at: Optional[datetime] = None,
        **extra,
    ) -> uuid.UUID:
        return await self._add(
            Account(
                tenant_id=tenant_id,
                name=name,
                normalized_name=normalize_company_name(name),
                domain=domain,
                last_synced_at=last_synced_at,
                **extra,
            )
        )

    async def alias(
        self,
        account_id: uuid.UUID,
        domain: str,
        *,
        source: str = "crm_sync",
        tenant_id: uuid.UUID = TENANT,
    ) -> uuid.UUID:
        return await self._add(
            AccountDomainAlias(
                tenant_id=tenant_id, account_id=account_id, domain=domain, source=source
            )
        )

    async def contact(
        self,
        account_id: uuid.UUID,
        email: str,
        name: Optional[str] = None,
        *,
        tenant_id: uuid.UUID = TENANT,
    ) -> uuid.UUID:
        return await self._add(
            Contact(
                tenant_id=tenant_id,
                account_id=account_id,
                email=email,
                email_domain=email.rsplit("@", 1)[1],
                name=name,
            )
        )

    async def call(
        self,
        external: tuple = (),
        *,
        title: Optional[str] = None,
        host: Optional[str] = HOST_EMAIL,
        tenant_id: uuid.UUID = TENANT,
        account_id: Optional[uuid.UUID] = None,
        dismissed: bool = False,
        match_confidence: Optional[float] = None,
        match_method: str = "none",
        occurred_at: Optional[datetime] = None,
        resolved_at: Optional[datetime] = None,
    ) -> uuid.UUID:
        """Create a call. external holds emails or (email, name) pairs."""
        self._calls += 1
        call = Call(
            tenant_id=tenant_id,
            account_id=account_id,
            title=title,
            provider="zoom",
            occurred_at=occurred_at or BASE_TIME + timedelta(minutes=self._calls),
            dismissed=dismissed,
            match_confidence=match_confidence,
            match_method=match_method,
            resolved_at=resolved_at,
        )
        if host:
            call.participants.append(CallParticipant(email=host, name="Our Rep", is_host=True))
        for entry in external:
            email, name = entry if isinstance(entry, tuple) else (entry, None)
            call.participants.append(CallParticipant(email=email, name=name, is_host=False))
        return await self._add(call)

    async def story(self, account_id: uuid.UUID, *, tenant_id: uuid.UUID = TENANT) -> uuid.UUID:
        return await self._add(Story(tenant_id=tenant_id, account_id=account_id, title="Win story"))

    async def landing_page(
        self, account_id: uuid.UUID, story_id: uuid.UUID, *, tenant_id: uuid.UUID = TENANT
    ) -> uuid.UUID:
        return await self._add(
            LandingPage(
                tenant_id=tenant_id,
                account_id=account_id,
                story_id=story_id,
                slug=f"page-{uuid.uuid4().hex[:8]}",
                title="Case study",
            )
        )

    async def crm_event(self, account_id: uuid.UUID, *, tenant_id: uuid.UUID = TENANT) -> uuid.UUID:
        return await self._add(
            CrmEvent(tenant_id=tenant_id, account_id=account_id, event_type="stage_change")
        )

    # -- reads ---------------------------------------------------------------

    async def get(self, model, row_id: uuid.UUID):
        async with self.session_factory() as session:
            return await session.get(model, row_id)

    async def rows(self, model, *criteria):
        async with self.session_factory() as session:
            result = await session.execute(select(model).where(*criteria))
            return list(result.scalars().all())

    async def count(self, model, *criteria) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(model).where(*criteria)
            )
            return result.scalar_one()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={"schema_translate_map": {"crm": None}},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings():
    return ResolutionSettings(internal_domains=frozenset({"ourco.example"}))


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def service(session_factory, settings):
    return ResolutionService(session_factory, settings)


@pytest.fixture
def tenant():
    return TENANT


@pytest.fixture
def other_tenant():
    return OTHER_TENANT
