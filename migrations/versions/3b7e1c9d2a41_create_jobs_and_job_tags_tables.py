"""create jobs and job_tags tables

Revision ID: 3b7e1c9d2a41
Revises:
Create Date: 2026-10-19 09:12:40.518204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("job_type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            comment="Job status: pending|processing|completed|failed|cancelled",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            comment="Higher is dispatched first",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            comment="Number of attempts made",
        ),
        sa.Column(
            "max_attempts",
            sa.Integer,
            nullable=False,
            comment="Attempts allowed before failing",
        ),
        sa.Column("timeout_ms", sa.Integer, nullable=True, comment="Handler time budget"),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Earliest time to run job",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When job was claimed by a worker",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that claimed the job"
        ),
        # Outcome
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
    )

    op.create_table(
        "job_tags",
        sa.Column(
            "job_id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("tag", sa.Text, primary_key=True),
        sa.Column("position", sa.Integer, nullable=False),
    )

    # Create indexes for performance
    op.create_index("ix_jobs_claim", "jobs", ["status", "priority", "id"])
    op.create_index("ix_jobs_locked_at", "jobs", ["locked_at"])
    op.create_index("ix_jobs_completed_at", "jobs", ["completed_at"])
    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])
    op.create_index("ix_job_tags_tag", "job_tags", ["tag", "job_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("job_tags")
    op.drop_table("jobs")
