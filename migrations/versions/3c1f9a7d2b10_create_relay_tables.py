"""create outbox, job queue and worker heartbeat tables

Revision ID: 3c1f9a7d2b10
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1f9a7d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "events_outbox",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "event_name", sa.Text, nullable=False, comment="Event tag, e.g. invoice_generated"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("company_id", sa.Integer, nullable=True),
        sa.Column("driver_id", sa.Integer, nullable=True),
        sa.Column(
            "request_id", sa.Integer, nullable=True, comment="Logical correlation key"
        ),
        sa.Column("audience_type", sa.Text, nullable=True),
        sa.Column("audience_id", sa.Integer, nullable=True),
        sa.Column("event_key", sa.Text, nullable=True),
        sa.Column(
            "metadata", sa.Text, nullable=True, comment="Opaque payload, passed through"
        ),
        sa.Column(
            "process_status", sa.Text, nullable=False, server_default="pending"
        ),
        sa.Column("send_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("queue_status", sa.Text, nullable=True, server_default="pending"),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "process_status IN ('pending', 'sent', 'failed', 'ignored')",
            name="events_outbox_process_status_check",
        ),
    )
    op.create_index("idx_events_queue", "events_outbox", ["queue_status"])

    op.create_table(
        "jobs_queue",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("job_type", sa.Text, nullable=False, comment="Handler selector"),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Job-specific parameters"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=True,
            server_default="pending",
            comment="Job status: pending|processing|done|failed|dead",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Failed executions so far",
        ),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column(
            "run_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run job",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID holding the lease"
        ),
        sa.Column(
            "locked_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Lease acquisition time",
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column("idempotency_key", sa.Text, nullable=True, unique=True),
        sa.Column(
            "source_event_id",
            sa.Integer,
            nullable=True,
            unique=True,
            comment="events_outbox.id that produced this job",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'done', 'failed', 'dead')",
            name="jobs_queue_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="jobs_queue_attempts_check"),
        sa.CheckConstraint("max_attempts >= 1", name="jobs_queue_max_attempts_check"),
    )

    # Claim scan: due pending work ordered by run_at
    op.create_index("idx_jobs_fetch", "jobs_queue", ["status", "run_at"])
    # Lease expiry scan
    op.create_index("idx_jobs_lock", "jobs_queue", ["locked_at"])
    op.create_index("idx_jobs_type", "jobs_queue", ["job_type"])

    op.create_table(
        "worker_heartbeat",
        sa.Column("worker_id", sa.Text, primary_key=True),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("worker_heartbeat")
    op.drop_index("idx_jobs_type", table_name="jobs_queue")
    op.drop_index("idx_jobs_lock", table_name="jobs_queue")
    op.drop_index("idx_jobs_fetch", table_name="jobs_queue")
    op.drop_table("jobs_queue")
    op.drop_index("idx_events_queue", table_name="events_outbox")
    op.drop_table("events_outbox")
