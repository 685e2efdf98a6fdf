"""create jobs and questions tables

Revision ID: 3b7e1c9a4d20
Revises:
Create Date: 2026-10-18 09:12:44.318205

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False, comment="Workspace scope"),
        sa.Column("creator_id", sa.Uuid(), nullable=True, comment="Requesting user"),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="pending|processing|batch_pending|completed|failed",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Higher runs first",
        ),
        sa.Column("payload", sa.JSON, nullable=False, comment="Type-specific parameters"),
        sa.Column("result", sa.JSON, nullable=True, comment="Output of a completed job"),
        sa.Column("error", sa.Text, nullable=True, comment="Failure message"),
        # Retry bookkeeping
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "run_after",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run",
        ),
        # Lease
        sa.Column("locked_by", sa.Text, nullable=True, comment="Worker holding the lease"),
        sa.Column("locked_at", sa.TIMESTAMP(timezone=True), nullable=True, comment="Lease start"),
        sa.Column(
            "external_batch_id",
            sa.Text,
            nullable=True,
            comment="Handle returned by the external batch API",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'batch_pending', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint(
            "(status = 'processing') = (locked_by IS NOT NULL AND locked_at IS NOT NULL)",
            name="jobs_lease_check",
        ),
        sa.CheckConstraint(
            "attempts >= 0 AND (status = 'failed' OR attempts <= max_attempts)",
            name="jobs_attempts_check",
        ),
    )

    op.create_index("ix_jobs_status_run_after", "jobs", ["status", "run_after"])
    op.create_index("ix_jobs_claim_order", "jobs", ["status", "priority", "created_at"])
    op.create_index("ix_jobs_tenant_status", "jobs", ["tenant_id", "status"])
    op.create_index("ix_jobs_external_batch_id", "jobs", ["external_batch_id"])
    op.create_index("ix_jobs_locked_at", "jobs", ["locked_at"])

    op.create_table(
        "questions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("topic_id", sa.Text, nullable=True),
        sa.Column("origin", sa.Text, nullable=False, server_default="ai_generated"),
        sa.Column("prompt_text", sa.Text, nullable=False),
        sa.Column("prompt_latex", sa.Text, nullable=True),
        sa.Column("answer", sa.JSON, nullable=False),
        sa.Column("answer_type", sa.Text, nullable=False, server_default="exact"),
        sa.Column("difficulty", sa.SmallInteger, nullable=False, server_default="3"),
        sa.Column("hints", sa.JSON, nullable=False),
        sa.Column("solution_steps", sa.JSON, nullable=False),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("embedding", sa.JSON, nullable=True),
        sa.Column("embedding_model", sa.Text, nullable=True),
        sa.Column("embedding_hash", sa.Text, nullable=True),
        sa.Column("parent_question_id", sa.Uuid(), nullable=True),
        sa.Column("source_job_id", sa.Uuid(), nullable=True),
        sa.Column("source_key", sa.Text, nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("source_job_id", "source_key", name="uq_questions_source"),
        sa.CheckConstraint("difficulty BETWEEN 1 AND 5", name="questions_difficulty_check"),
    )
    op.create_index(
        "ix_questions_workspace_topic", "questions", ["workspace_id", "topic_id"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_questions_workspace_topic", table_name="questions")
    op.drop_table("questions")
    op.drop_index("ix_jobs_locked_at", table_name="jobs")
    op.drop_index("ix_jobs_external_batch_id", table_name="jobs")
    op.drop_index("ix_jobs_tenant_status", table_name="jobs")
    op.drop_index("ix_jobs_claim_order", table_name="jobs")
    op.drop_index("ix_jobs_status_run_after", table_name="jobs")
    op.drop_table("jobs")
