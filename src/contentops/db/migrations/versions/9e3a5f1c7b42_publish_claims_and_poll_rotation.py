"""publish claims and poll rotation

Revision ID: 9e3a5f1c7b42
Revises: 4c1e7a9d2b10
Create Date: 2026-10-19 10:41:07.902114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9e3a5f1c7b42"
down_revision: Union[str, Sequence[str], None] = "4c1e7a9d2b10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Existing records were written after a successful push
    op.add_column(
        "publish_records",
        sa.Column("status", sa.String(20), nullable=False, server_default="PUSHED"),
    )
    op.add_column(
        "publish_records",
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.alter_column(
        "publish_records",
        "published_at",
        existing_type=sa.DateTime(timezone=True),
        nullable=True,
        server_default=None,
    )

    op.add_column(
        "job_items",
        sa.Column("last_polled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_job_items_status_last_polled_at",
        "job_items",
        ["status", "last_polled_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_job_items_status_last_polled_at", table_name="job_items")
    op.drop_column("job_items", "last_polled_at")

    op.execute("DELETE FROM publish_records WHERE status = 'PENDING_PUSH'")
    op.alter_column(
        "publish_records",
        "published_at",
        existing_type=sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )
    op.drop_column("publish_records", "claimed_at")
    op.drop_column("publish_records", "status")
