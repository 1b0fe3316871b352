"""create sync engine tables

Revision ID: a1c2e3f4a5b6
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "a1c2e3f4a5b6"
down_revision = None
branch_labels = None
depends_on = None

# Known default organization ID, seeded so single-tenant installs work out of the box
DEFAULT_ORG_ID = "00000000-0000-0000-0000-000000000001"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("timezone", sa.String(length=50), nullable=False, server_default="UTC"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.execute(
        sa.text(
            "INSERT INTO organizations (id, name, timezone) "
            f"VALUES ('{DEFAULT_ORG_ID}', 'Default', 'UTC')"
        )
    )

    op.create_table(
        "contacts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("contact_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=50), nullable=True),
        sa.Column("email_normalized", sa.String(length=255), nullable=True),
        sa.Column("phone_normalized", sa.String(length=50), nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=50), nullable=False, server_default="manual"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_organization_id", "contacts", ["organization_id"])
    op.create_index("ix_contacts_email_normalized", "contacts", ["email_normalized"])
    op.create_index("ix_contacts_phone_normalized", "contacts", ["phone_normalized"])

    op.create_table(
        "calendar_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=500), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("all_day", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("timezone", sa.String(length=50), nullable=False, server_default="UTC"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("attendees", sa.JSON(), nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False, server_default="manual"),
        sa.Column("extra_data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_calendar_events_organization_id", "calendar_events", ["organization_id"])

    op.create_table(
        "integrations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("owning_user_id", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("provider_account_id", sa.String(length=255), nullable=True),
        sa.Column("provider_account_email", sa.String(length=255), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "provider", name="uq_integrations_org_provider"),
    )
    op.create_index("ix_integrations_organization_id", "integrations", ["organization_id"])

    op.create_table(
        "integration_credentials",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "integration_id",
            sa.String(length=36),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.JSON(), nullable=False),
        sa.Column("token_type", sa.String(length=30), nullable=False, server_default="Bearer"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_integration_credentials_integration_id",
        "integration_credentials",
        ["integration_id"],
        unique=True,
    )

    op.create_table(
        "linked_resources",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "integration_id",
            sa.String(length=36),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("resource_type", sa.String(length=30), nullable=False),
        sa.Column("external_resource_id", sa.String(length=255), nullable=False),
        sa.Column("external_resource_name", sa.String(length=255), nullable=True),
        sa.Column("field_mapping", sa.JSON(), nullable=False),
        sa.Column("sync_direction", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "integration_id",
            "external_resource_id",
            name="uq_linked_resources_integration_resource",
        ),
    )
    op.create_index("ix_linked_resources_integration_id", "linked_resources", ["integration_id"])

    op.create_table(
        "record_mappings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "integration_id",
            sa.String(length=36),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "linked_resource_id",
            sa.String(length=36),
            sa.ForeignKey("linked_resources.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("record_type", sa.String(length=50), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("local_id", sa.String(length=36), nullable=False),
        sa.Column("external_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "integration_id",
            "external_id",
            name="uq_record_mappings_integration_external",
        ),
        sa.UniqueConstraint(
            "integration_id",
            "local_id",
            name="uq_record_mappings_integration_local",
        ),
    )
    op.create_index("ix_record_mappings_integration_id", "record_mappings", ["integration_id"])
    op.create_index(
        "ix_record_mappings_linked_resource_id", "record_mappings", ["linked_resource_id"]
    )

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "integration_id",
            sa.String(length=36),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "linked_resource_id",
            sa.String(length=36),
            sa.ForeignKey("linked_resources.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sync_type", sa.String(length=20), nullable=False),
        sa.Column("direction", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("records_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=False),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("checkpoint", sa.String(length=2048), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_runs_integration_id", "sync_runs", ["integration_id"])
    # At most one running run per integration
    op.create_index(
        "uq_sync_runs_one_running_per_integration",
        "sync_runs",
        ["integration_id"],
        unique=True,
        sqlite_where=sa.text("status = 'running'"),
        postgresql_where=sa.text("status = 'running'"),
    )


def downgrade() -> None:
    op.drop_index("uq_sync_runs_one_running_per_integration", table_name="sync_runs")
    op.drop_index("ix_sync_runs_integration_id", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("ix_record_mappings_linked_resource_id", table_name="record_mappings")
    op.drop_index("ix_record_mappings_integration_id", table_name="record_mappings")
    op.drop_table("record_mappings")
    op.drop_index("ix_linked_resources_integration_id", table_name="linked_resources")
    op.drop_table("linked_resources")
    op.drop_index(
        "ix_integration_credentials_integration_id", table_name="integration_credentials"
    )
    op.drop_table("integration_credentials")
    op.drop_index("ix_integrations_organization_id", table_name="integrations")
    op.drop_table("integrations")
    op.drop_index("ix_calendar_events_organization_id", table_name="calendar_events")
    op.drop_table("calendar_events")
    op.drop_index("ix_contacts_phone_normalized", table_name="contacts")
    op.drop_index("ix_contacts_email_normalized", table_name="contacts")
    op.drop_index("ix_contacts_organization_id", table_name="contacts")
    op.drop_table("contacts")
    op.drop_table("organizations")
