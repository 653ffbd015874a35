"""Initial schema: accounts, aliases, contacts, calls and merge dependents.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS crm")

    # ─── Accounts and learned identity data ──────────────────────────────────

    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("normalized_name", sa.Text, nullable=False),
        sa.Column("domain", sa.Text, nullable=True),
        sa.Column("industry", sa.Text, nullable=True),
        sa.Column("salesforce_id", sa.Text, nullable=True),
        sa.Column("hubspot_id", sa.Text, nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        schema="crm",
    )
    op.create_index(
        "ix_accounts_tenant_normalized_name", "accounts", ["tenant_id", "normalized_name"], schema="crm"
    )
    op.create_index("ix_accounts_tenant_domain", "accounts", ["tenant_id", "domain"], schema="crm")

    op.create_table(
        "account_domain_aliases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("domain", sa.Text, nullable=False),
        sa.Column("source", sa.Text, nullable=False, server_default="crm_sync"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "source IN ('crm_sync', 'manual_resolution', 'account_creation', 'merge')",
            name="ck_alias_source",
        ),
        sa.UniqueConstraint("tenant_id", "domain", name="uq_alias_tenant_domain"),
        sa.ForeignKeyConstraint(["account_id"], ["crm.accounts.id"], name="fk_alias_account"),
        schema="crm",
    )
    op.create_index(
        "ix_crm_account_domain_aliases_account_id", "account_domain_aliases", ["account_id"], schema="crm"
    )

    op.create_table(
        "contacts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("email_domain", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "account_id", "email", name="uq_contact_tenant_account_email"),
        sa.ForeignKeyConstraint(["account_id"], ["crm.accounts.id"], name="fk_contact_account"),
        schema="crm",
    )
    op.create_index("ix_contacts_tenant_email", "contacts", ["tenant_id", "email"], schema="crm")
    op.create_index("ix_crm_contacts_account_id", "contacts", ["account_id"], schema="crm")

    # ─── Calls ───────────────────────────────────────────────────────────────

    op.create_table(
        "calls",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("provider", sa.Text, nullable=True),
        sa.Column("external_id", sa.Text, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dismissed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("match_confidence", sa.Float, nullable=True),
        sa.Column("match_method", sa.Text, nullable=False, server_default="none"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_call_match_confidence_range",
        ),
        sa.CheckConstraint(
            "NOT (account_id IS NOT NULL AND dismissed)",
            name="ck_call_resolved_not_dismissed",
        ),
        sa.CheckConstraint(
            "match_method IN ('none', 'email_domain', 'fuzzy_name', 'manual')",
            name="ck_call_match_method",
        ),
        sa.ForeignKeyConstraint(["account_id"], ["crm.accounts.id"], name="fk_call_account"),
        schema="crm",
    )
    op.create_index("ix_calls_tenant_queue", "calls", ["tenant_id", "account_id", "dismissed"], schema="crm")
    op.create_index("ix_crm_calls_account_id", "calls", ["account_id"], schema="crm")

    op.create_table(
        "call_participants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("call_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("name", sa.Text, nullable=True),
        sa.Column("is_host", sa.Boolean, nullable=False, server_default="false"),
        sa.ForeignKeyConstraint(["call_id"], ["crm.calls.id"], name="fk_participant_call"),
        schema="crm",
    )
    op.create_index("ix_crm_call_participants_call_id", "call_participants", ["call_id"], schema="crm")

    # ─── Dependents rewritten by merge ───────────────────────────────────────

    op.create_table(
        "stories",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("body", sa.Text, nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["account_id"], ["crm.accounts.id"], name="fk_story_account"),
        schema="crm",
    )
    op.create_index("ix_crm_stories_account_id", "stories", ["account_id"], schema="crm")

    op.create_table(
        "landing_pages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("story_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slug", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="draft"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('draft', 'published', 'archived')", name="ck_landing_page_status"
        ),
        sa.ForeignKeyConstraint(["story_id"], ["crm.stories.id"], name="fk_landing_page_story"),
        sa.ForeignKeyConstraint(["account_id"], ["crm.accounts.id"], name="fk_landing_page_account"),
        schema="crm",
    )
    op.create_index("ix_crm_landing_pages_account_id", "landing_pages", ["account_id"], schema="crm")

    op.create_table(
        "crm_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("opportunity_id", sa.Text, nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("raw_payload", sa.JSON, nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["crm.accounts.id"], name="fk_crm_event_account"),
        schema="crm",
    )
    op.create_index("ix_crm_crm_events_account_id", "crm_events", ["account_id"], schema="crm")

    # ─── Merge ledger ────────────────────────────────────────────────────────

    op.create_table(
        "account_merge_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("source_account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("target_account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("source_snapshot", sa.JSON, nullable=True),
        sa.Column("moved_call_ids", sa.JSON, nullable=False),
        sa.Column("moved_contact_ids", sa.JSON, nullable=False),
        sa.Column("discarded_contacts", sa.JSON, nullable=False),
        sa.Column("moved_alias_domains", sa.JSON, nullable=False),
        sa.Column("dropped_alias_domains", sa.JSON, nullable=False),
        sa.Column("reassigned_counts", sa.JSON, nullable=False),
        sa.Column("initiated_by", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        schema="crm",
    )
    op.create_index(
        "ix_merge_runs_tenant_created", "account_merge_runs", ["tenant_id", "created_at"], schema="crm"
    )


def downgrade() -> None:
    op.drop_index("ix_merge_runs_tenant_created", table_name="account_merge_runs", schema="crm")
    # Drop in reverse dependency order
    op.drop_table("account_merge_runs", schema="crm")
    op.drop_table("crm_events", schema="crm")
    op.drop_table("landing_pages", schema="crm")
    op.drop_table("stories", schema="crm")
    op.drop_table("call_participants", schema="crm")
    op.drop_table("calls", schema="crm")
    op.drop_table("contacts", schema="crm")
    op.drop_table("account_domain_aliases", schema="crm")
    op.drop_table("accounts", schema="crm")
