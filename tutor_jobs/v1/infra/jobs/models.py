"""
Job store models: the durable table that is the queue itself.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tutor_jobs.infra.database import Base, UTCDateTime, utcnow


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    BATCH_PENDING = "batch_pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class JobType(str, Enum):
    """Job types known to this deployment.

    The ``type`` column is free text; a type exists once a handler is
    registered for it.
    """

    EXTRACT_MATERIAL = "EXTRACT_MATERIAL"
    GENERATE_QUESTIONS = "GENERATE_QUESTIONS"
    GENERATE_QUESTIONS_BATCH = "GENERATE_QUESTIONS_BATCH"
    GENERATE_PDF = "GENERATE_PDF"
    REGEN_VARIANT = "REGEN_VARIANT"
    DAILY_SPACED_REP_REFRESH = "DAILY_SPACED_REP_REFRESH"
    PROCESS_BATCH_RESULT = "PROCESS_BATCH_RESULT"
    GENERATE_EMBEDDINGS = "GENERATE_EMBEDDINGS"
    RECONCILE_STATS = "RECONCILE_STATS"
    REFRESH_MATERIALIZED_VIEWS = "REFRESH_MATERIALIZED_VIEWS"


class Job(Base):
    """
    A unit of deferred or externally-dependent work.

    Lease fields (``locked_by``, ``locked_at``) are set only while the row is
    ``processing``; ``external_batch_id`` only for jobs delegated to the
    external batch API.
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, nullable=False, comment="Workspace scope"
    )
    creator_id: Mapped[UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Requesting user"
    )
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="pending|processing|batch_pending|completed|failed",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher runs first"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Type-specific parameters"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Output of a completed job"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Failure message (last retry error while pending)"
    )

    # Retry bookkeeping
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    run_after: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Earliest time to run"
    )

    # Lease
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker holding the lease"
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Lease start"
    )

    external_batch_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Handle returned by the external batch API"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'batch_pending', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        CheckConstraint(
            "(status = 'processing') = (locked_by IS NOT NULL AND locked_at IS NOT NULL)",
            name="jobs_lease_check",
        ),
        CheckConstraint(
            "attempts >= 0 AND (status = 'failed' OR attempts <= max_attempts)",
            name="jobs_attempts_check",
        ),
        Index("ix_jobs_status_run_after", "status", "run_after"),
        Index("ix_jobs_claim_order", "status", "priority", "created_at"),
        Index("ix_jobs_tenant_status", "tenant_id", "status"),
        Index("ix_jobs_external_batch_id", "external_batch_id"),
        Index("ix_jobs_locked_at", "locked_at"),
    )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_leased(self) -> bool:
        return self.status == JobStatus.PROCESSING.value

    def is_lease_stale(self, lease_timeout_s: int, now: datetime | None = None) -> bool:
        """Check if a processing lease has outlived the lease timeout."""
        if not self.is_leased() or self.locked_at is None:
            return False
        now = now or utcnow()
        return (now - self.locked_at).total_seconds() > lease_timeout_s
