"""The merge registry must cover every foreign key to crm.accounts."""
import pytest
from sqlalchemy import Column, ForeignKey, MetaData, Table, UUID

from db.models import Base
from resolution import merge
from resolution.dependents import DEPENDENTS, unregistered_account_references


def test_registry_covers_every_account_reference():
    assert unregistered_account_references() == []


def test_missing_entry_is_reported():
    registry = tuple(d for d in DEPENDENTS if d.name != "landing_pages")
    assert unregistered_account_references(Base.metadata, registry) == [
        "crm.landing_pages.account_id"
    ]


def test_new_table_referencing_accounts_is_reported():
    metadata = MetaData()
    for table in Base.metadata.tables.values():
        table.to_metadata(metadata)
    Table(
        "proposals",
        metadata,
        Column("id", UUID(as_uuid=True), primary_key=True),
        Column("account_id", UUID(as_uuid=True), ForeignKey("crm.accounts.id")),
        schema="crm",
    )
    assert unregistered_account_references(metadata) == ["crm.proposals.account_id"]


def test_registry_order_moves_calls_first():
    assert [d.name for d in DEPENDENTS] == [
        "calls",
        "contacts",
        "domain_aliases",
        "stories",
        "landing_pages",
        "crm_events",
    ]


@pytest.mark.asyncio
async def test_merge_refuses_incomplete_registry(session, seed, tenant):
    source = await seed.account("Contoso Ltd")
    target = await seed.account("Contoso")
    registry = tuple(d for d in DEPENDENTS if d.name != "crm_events")

    with pytest.raises(RuntimeError, match="crm.crm_events.account_id"):
        await merge.merge_accounts(session, tenant, source, target, registry=registry)
