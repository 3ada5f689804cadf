"""init schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _ts():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    # -------------------------
    # Isolation root
    # -------------------------
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("slug", sa.String(length=80), nullable=False),
        sa.Column("contact_email", sa.String(length=200), nullable=True),
        sa.Column("contact_phone", sa.String(length=40), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("country", sa.String(length=80), nullable=False, server_default="Germany"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_ts(),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="tenant"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_verified_at", sa.DateTime(), nullable=True),
        *_ts(),
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # -------------------------
    # Property tree
    # -------------------------
    op.create_table(
        "buildings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("city", sa.String(length=120), nullable=False),
        sa.Column("postal_code", sa.String(length=20), nullable=False),
        sa.Column("country", sa.String(length=80), nullable=False, server_default="Germany"),
        sa.Column("total_units", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("year_built", sa.Integer(), nullable=True),
        sa.Column("property_type", sa.String(length=20), nullable=False, server_default="apartment"),
        *_ts(),
    )
    op.create_index("ix_buildings_org_id", "buildings", ["org_id"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("building_id", sa.Uuid(), sa.ForeignKey("buildings.id"), nullable=False),
        sa.Column("contract_number", sa.String(length=40), nullable=False),
        sa.Column("unit_number", sa.String(length=40), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("rent_amount", sa.Float(), nullable=False),
        sa.Column("deposit_amount", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("contract_file_url", sa.String(length=500), nullable=True),
        *_ts(),
        sa.UniqueConstraint("org_id", "contract_number", name="uq_contracts_org_number"),
    )
    op.create_index("ix_contracts_org_id", "contracts", ["org_id"])
    op.create_index("ix_contracts_building_id", "contracts", ["building_id"])
    op.create_index("ix_contracts_is_active", "contracts", ["is_active"])
    op.create_index("ix_contracts_building_unit", "contracts", ["building_id", "unit_number"])

    op.create_table(
        "tenant_contracts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id"), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False, server_default="100"),
        sa.Column("is_main_tenant", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("contract_id", "tenant_id", name="uq_tenant_contracts_contract_tenant"),
    )
    op.create_index("ix_tenant_contracts_org_id", "tenant_contracts", ["org_id"])
    op.create_index("ix_tenant_contracts_tenant_id", "tenant_contracts", ["tenant_id"])
    op.create_index("ix_tenant_contracts_contract_id", "tenant_contracts", ["contract_id"])

    # -------------------------
    # Operations
    # -------------------------
    op.create_table(
        "tickets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("building_id", sa.Uuid(), sa.ForeignKey("buildings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id"), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_to_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="open"),
        sa.Column("category", sa.String(length=30), nullable=False, server_default="maintenance"),
        sa.Column("estimated_cost", sa.Float(), nullable=True),
        sa.Column("actual_cost", sa.Float(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        *_ts(),
    )
    op.create_index("ix_tickets_org_id", "tickets", ["org_id"])
    op.create_index("ix_tickets_building_id", "tickets", ["building_id"])
    op.create_index("ix_tickets_contract_id", "tickets", ["contract_id"])
    op.create_index("ix_tickets_created_by_id", "tickets", ["created_by_id"])
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"])
    op.create_index("ix_tickets_org_status", "tickets", ["org_id", "status"])

    op.create_table(
        "consumption_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id"), nullable=False),
        sa.Column("consumption_type", sa.String(length=20), nullable=False),
        sa.Column("period", sa.String(length=7), nullable=False),
        sa.Column("reading", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False, server_default="kWh"),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("meter_number", sa.String(length=80), nullable=True),
        sa.Column("reading_date", sa.Date(), nullable=True),
        *_ts(),
        sa.UniqueConstraint(
            "contract_id", "consumption_type", "period", name="uq_consumption_contract_type_period"
        ),
    )
    op.create_index("ix_consumption_records_org_id", "consumption_records", ["org_id"])
    op.create_index(
        "ix_consumption_contract_period_type",
        "consumption_records",
        ["contract_id", "period", "consumption_type"],
    )

    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("building_id", sa.Uuid(), sa.ForeignKey("buildings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id"), nullable=True),
        sa.Column("ticket_id", sa.Uuid(), sa.ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True),
        sa.Column("uploaded_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("original_file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(length=120), nullable=False),
        sa.Column("file_url", sa.String(length=500), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False, server_default="document"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_documents_org_id", "documents", ["org_id"])
    op.create_index("ix_documents_building_id", "documents", ["building_id"])
    op.create_index("ix_documents_contract_id", "documents", ["contract_id"])
    op.create_index("ix_documents_ticket_id", "documents", ["ticket_id"])
    op.create_index("ix_documents_uploaded_by_id", "documents", ["uploaded_by_id"])
    op.create_index("ix_documents_created_at", "documents", ["created_at"])

    op.create_table(
        "invitation_tokens",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id"), nullable=False),
        sa.Column("token", sa.String(length=80), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("tenant_name", sa.String(length=160), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False, server_default="100"),
        sa.Column("is_main_tenant", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_invitation_tokens_org_id", "invitation_tokens", ["org_id"])
    op.create_index("ix_invitation_tokens_contract_id", "invitation_tokens", ["contract_id"])
    op.create_index("ix_invitation_tokens_token", "invitation_tokens", ["token"], unique=True)


def downgrade():
    for table in (
        "invitation_tokens",
        "documents",
        "consumption_records",
        "tickets",
        "tenant_contracts",
        "contracts",
        "buildings",
        "users",
        "organizations",
    ):
        op.drop_table(table)
