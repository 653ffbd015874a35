"""ResolutionService: transaction boundary, error mapping and post-commit notification."""
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from db.models import AccountDomainAlias, Call
from resolution.errors import NotFound, TransactionFailure, ValidationError
from resolution.service import ResolutionService, as_uuid
from resolution.unit_of_work import unit_of_work


@pytest.fixture
def events():
    return []


@pytest.fixture
def notifying_service(session_factory, settings, seed, events):
    async def notifier(event, payload):
        # Runs after commit: the change is already visible to other sessions.
        call = await seed.get(Call, uuid.UUID(payload["call_id"]))
        events.append((event, payload, call.account_id))

    return ResolutionService(session_factory, settings, notifier)


@pytest.mark.asyncio
async def test_notifier_runs_after_commit(notifying_service, seed, tenant, events):
    account = await seed.account("Contoso")
    call_id = await seed.call(["kim@contoso.example"])

    await notifying_service.resolve_call(tenant, call_id, account)

    assert len(events) == 1
    event, payload, committed_account = events[0]
    assert event == "call.resolved"
    assert payload["account_id"] == str(account)
    assert committed_account == account


@pytest.mark.asyncio
async def test_notifier_is_silent_on_failure(notifying_service, seed, tenant, events):
    call_id = await seed.call(["kim@contoso.example"])

    with pytest.raises(NotFound):
        await notifying_service.resolve_call(tenant, call_id, uuid.uuid4())

    assert events == []


@pytest.mark.asyncio
async def test_failing_notifier_does_not_fail_the_operation(session_factory, settings, seed, tenant):
    notifier = AsyncMock(side_effect=RuntimeError("webhook down"))
    service = ResolutionService(session_factory, settings, notifier)
    account = await seed.account("Contoso")
    call_id = await seed.call(["kim@contoso.example"])

    result = await service.resolve_call(tenant, call_id, account)

    assert result.account_id == account
    notifier.assert_awaited_once()
    assert (await seed.get(Call, call_id)).account_id == account


@pytest.mark.asyncio
async def test_dismiss_notifies_only_when_something_changed(session_factory, settings, seed, tenant):
    notifier = AsyncMock()
    service = ResolutionService(session_factory, settings, notifier)
    account = await seed.account("Contoso")
    resolved = await seed.call(["kim@contoso.example"], account_id=account)

    await service.dismiss_calls(tenant, [resolved])

    notifier.assert_not_awaited()


@pytest.mark.asyncio
async def test_storage_error_becomes_retryable_transaction_failure(service, seed, tenant):
    account = await seed.account("Contoso")
    call_id = await seed.call(["kim@contoso.example"])
    failure = IntegrityError("UPDATE crm.calls", {}, Exception("constraint violated"))

    with patch("db.repositories.calls.assign", AsyncMock(side_effect=failure)):
        with pytest.raises(TransactionFailure) as excinfo:
            await service.resolve_call(tenant, call_id, account)

    assert excinfo.value.retryable is True
    assert excinfo.value.details == {"cause": "IntegrityError"}
    assert excinfo.value.__cause__ is failure
    assert (await seed.get(Call, call_id)).account_id is None


@pytest.mark.asyncio
async def test_unit_of_work_rolls_back_on_error(session_factory, seed, tenant):
    account = await seed.account("Contoso")

    with pytest.raises(ValueError):
        async with unit_of_work(session_factory) as uow:
            uow.session.add(
                AccountDomainAlias(
                    tenant_id=tenant, account_id=account, domain="contoso.example", source="crm_sync"
                )
            )
            await uow.session.flush()
            raise ValueError("boom")

    assert await seed.count(AccountDomainAlias) == 0


@pytest.mark.asyncio
async def test_ids_are_validated_before_touching_storage(service, tenant):
    with pytest.raises(ValidationError):
        await service.auto_resolve_call(tenant, "42")
    with pytest.raises(ValidationError):
        await service.list_queue("not-a-tenant")


def test_as_uuid():
    value = uuid.uuid4()
    assert as_uuid(value, "call_id") is value
    assert as_uuid(str(value), "call_id") == value
    with pytest.raises(ValidationError) as excinfo:
        as_uuid(None, "call_id")
    assert excinfo.value.details == {"call_id": "None"}


def test_session_factory_is_created_lazily(settings):
    with patch("resolution.service.get_session_factory") as factory:
        service = ResolutionService(settings=settings)
        factory.assert_not_called()
        assert service.session_factory is factory.return_value
        assert service.session_factory is factory.return_value
        factory.assert_called_once()
