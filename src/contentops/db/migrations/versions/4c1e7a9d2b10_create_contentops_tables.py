"""create contentops tables

Revision ID: 4c1e7a9d2b10
Revises:
Create Date: 2026-10-18 09:12:44.513201

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4c1e7a9d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_ITEM_STATUSES = "status IN ('PENDING', 'RUNNING', 'PROCESSING')"
PENDING_ONLY = "status = 'PENDING'"


def _tenant_fk() -> sa.Column:
    return sa.Column(
        "tenant_id",
        sa.String(255),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(50), nullable=False, server_default="free"),
        sa.Column("credits_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_used_this_cycle", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("subscription_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_billing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_tenants_next_billing_at", "tenants", ["next_billing_at"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_per_item", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("params", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_jobs_tenant_id", "jobs", ["tenant_id"])
    op.create_index("ix_jobs_tenant_status", "jobs", ["tenant_id", "status"])

    op.create_table(
        "job_items",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.BigInteger(),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _tenant_fk(),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_job_items_job_id", "job_items", ["job_id"])
    op.create_index("ix_job_items_tenant_id", "job_items", ["tenant_id"])
    # Fair claiming: per-tenant queue heads and in-flight counts
    op.create_index(
        "ix_job_items_tenant_status_id",
        "job_items",
        ["tenant_id", "status", "id"],
        postgresql_where=sa.text(ACTIVE_ITEM_STATUSES),
    )
    op.create_index(
        "ix_job_items_status_id",
        "job_items",
        ["status", "id"],
        postgresql_where=sa.text(PENDING_ONLY),
    )
    # Poll sweep and stale-claim report
    op.create_index("ix_job_items_status_claimed_at", "job_items", ["status", "claimed_at"])

    op.create_table(
        "publish_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_item_id",
            sa.BigInteger(),
            sa.ForeignKey("job_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _tenant_fk(),
        sa.Column("applied_value", sa.JSON(), nullable=True),
        sa.Column("external_ref", sa.String(255), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("job_item_id", name="uq_publish_records_job_item"),
    )
    op.create_index("ix_publish_records_job_item_id", "publish_records", ["job_item_id"])
    op.create_index("ix_publish_records_tenant_id", "publish_records", ["tenant_id"])

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("entry_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.BigInteger(), nullable=True),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_credit_transactions_tenant_id", "credit_transactions", ["tenant_id"])
    op.create_index("ix_credit_transactions_job_id", "credit_transactions", ["job_id"])

    op.create_table(
        "billing_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(255), nullable=False, unique=True),
        _tenant_fk(),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("plan_id", sa.String(50), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_billing_events_tenant_id", "billing_events", ["tenant_id"])

    op.create_table(
        "scheduled_campaigns",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduled_campaigns_tenant_id", "scheduled_campaigns", ["tenant_id"])

    op.create_table(
        "scheduled_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "campaign_id",
            sa.BigInteger(),
            sa.ForeignKey("scheduled_campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _tenant_fk(),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        sa.Column(
            "job_id",
            sa.BigInteger(),
            sa.ForeignKey("jobs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduled_entries_campaign_id", "scheduled_entries", ["campaign_id"])
    op.create_index("ix_scheduled_entries_tenant_id", "scheduled_entries", ["tenant_id"])
    op.create_index("ix_scheduled_entries_job_id", "scheduled_entries", ["job_id"])
    op.create_index(
        "ix_scheduled_entries_status_scheduled_at",
        "scheduled_entries",
        ["status", "scheduled_at"],
    )


def downgrade() -> None:
    op.drop_table("scheduled_entries")
    op.drop_table("scheduled_campaigns")
    op.drop_table("billing_events")
    op.drop_table("credit_transactions")
    op.drop_table("publish_records")
    op.drop_table("job_items")
    op.drop_table("jobs")
    op.drop_table("tenants")
