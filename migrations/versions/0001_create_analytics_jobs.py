"""create_analytics_jobs

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the job record table.

    One row per asynchronous execution. Status, attempts and the terminal
    result/error are written only through conditional updates.
    """
    op.create_table(
        "analytics_jobs",
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("operation", sa.String(length=100), nullable=False),
        sa.Column("parameters", sa.JSON(none_as_null=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("result", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("error", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("submitted_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expire_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_analytics_jobs_operation", "analytics_jobs", ["operation"])
    op.create_index("ix_analytics_jobs_status", "analytics_jobs", ["status"])
    op.create_index("ix_analytics_jobs_expire_at", "analytics_jobs", ["expire_at"])


def downgrade() -> None:
    """Drop the job record table."""
    op.drop_index("ix_analytics_jobs_expire_at", table_name="analytics_jobs")
    op.drop_index("ix_analytics_jobs_status", table_name="analytics_jobs")
    op.drop_index("ix_analytics_jobs_operation", table_name="analytics_jobs")
    op.drop_table("analytics_jobs")
