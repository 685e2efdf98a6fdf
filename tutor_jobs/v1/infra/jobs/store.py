"""
Job store: every state transition of the jobs table as a single statement.

Claiming, releasing and sweeping are conditional UPDATEs so that overlapping
dispatcher invocations never need cross-row transactions. Callers own the
session and decide when to commit.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.logging import get_logger
from tutor_jobs.config.settings import Settings
from tutor_jobs.infra.database import utcnow
from tutor_jobs.v1.infra.jobs.models import Job, JobStatus

logger = get_logger(__name__)

CANCELED_ERROR = "Canceled"

_NO_SYNC = {"synchronize_session": False}


def claim_order_key(job: Job) -> tuple[int, datetime]:
    """Sort key for claimed rows: priority DESC, created_at ASC."""
    return (-job.priority, job.created_at)


class JobStore:
    """Atomic statements over the ``jobs`` table."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def insert(self, session: AsyncSession, job: Job) -> Job:
        session.add(job)
        await session.flush()
        return job

    async def get(
        self, session: AsyncSession, job_id: UUID, tenant_id: UUID | None = None
    ) -> Job | None:
        query = select(Job).where(Job.id == job_id)
        if tenant_id is not None:
            query = query.where(Job.tenant_id == tenant_id)
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def claim(
        self,
        session: AsyncSession,
        worker_id: str,
        limit: int,
        job_ids: list[UUID] | None = None,
        now: datetime | None = None,
    ) -> list[Job]:
        """
        Lease up to ``limit`` eligible pending jobs to ``worker_id``.

        UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP LOCKED) RETURNING:
        concurrent callers skip each other's rows on PostgreSQL, and the
        outer ``status = 'pending'`` guard keeps the statement exclusive on
        engines that ignore row locks.
        """
        if limit <= 0:
            return []
        now = now or utcnow()

        eligible = (
            select(Job.id)
            .where(
                and_(
                    Job.status == JobStatus.PENDING.value,
                    Job.run_after <= now,
                )
            )
            .order_by(Job.priority.desc(), Job.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        if job_ids:
            eligible = eligible.where(Job.id.in_(job_ids))

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id.in_(eligible),
                    Job.status == JobStatus.PENDING.value,
                )
            )
            .values(
                status=JobStatus.PROCESSING.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt, execution_options=_NO_SYNC)
        claimed = sorted(result.scalars().all(), key=claim_order_key)
        return claimed

    def _lease_held(self, job: Job):
        return and_(
            Job.id == job.id,
            Job.status == JobStatus.PROCESSING.value,
            Job.locked_by == job.locked_by,
            Job.locked_at == job.locked_at,
        )

    async def complete(
        self, session: AsyncSession, job: Job, result: dict[str, Any]
    ) -> bool:
        """Release a held lease as completed. False when the lease was lost."""
        stmt = (
            update(Job)
            .where(self._lease_held(job))
            .values(
                status=JobStatus.COMPLETED.value,
                result=result,
                error=None,
                locked_by=None,
                locked_at=None,
                updated_at=utcnow(),
            )
        )
        outcome = await session.execute(stmt, execution_options=_NO_SYNC)
        return outcome.rowcount == 1

    async def fail(
        self,
        session: AsyncSession,
        job: Job,
        error: str,
        retry_at: datetime | None = None,
    ) -> bool:
        """
        Release a held lease after a failed attempt.

        With ``retry_at`` the job returns to pending; without it the job is
        failed for good. Either way the attempt is counted.
        """
        now = utcnow()
        values: dict[str, Any] = {
            "attempts": Job.attempts + 1,
            "error": error,
            "locked_by": None,
            "locked_at": None,
            "updated_at": now,
        }
        if retry_at is not None:
            values.update(status=JobStatus.PENDING.value, run_after=retry_at)
        else:
            values.update(status=JobStatus.FAILED.value, result=None)

        stmt = update(Job).where(self._lease_held(job)).values(**values)
        outcome = await session.execute(stmt, execution_options=_NO_SYNC)
        return outcome.rowcount == 1

    async def sweep_stale_leases(
        self, session: AsyncSession, now: datetime | None = None
    ) -> int:
        """
        Recover processing rows whose lease outlived the lease timeout.

        The lost attempt is counted: rows with attempts left go back to
        pending immediately, the rest are failed.
        """
        now = now or utcnow()
        timeout_s = self.settings.job_lease_timeout_s
        cutoff = now - timedelta(seconds=timeout_s)
        next_attempts = Job.attempts + 1

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.locked_at < cutoff,
                )
            )
            .values(
                status=case(
                    (next_attempts < Job.max_attempts, JobStatus.PENDING.value),
                    else_=JobStatus.FAILED.value,
                ),
                attempts=next_attempts,
                locked_by=None,
                locked_at=None,
                run_after=now,
                error=f"Lease expired after {timeout_s}s without completion",
                updated_at=now,
            )
        )
        outcome = await session.execute(stmt, execution_options=_NO_SYNC)
        recovered = outcome.rowcount or 0
        if recovered:
            logger.warning(
                "Recovered stale job leases",
                recovered=recovered,
                lease_timeout_s=timeout_s,
            )
        return recovered

    async def list_batch_pending(
        self,
        session: AsyncSession,
        limit: int,
        job_ids: list[UUID] | None = None,
        tenant_id: UUID | None = None,
    ) -> list[Job]:
        query = (
            select(Job)
            .where(
                and_(
                    Job.status == JobStatus.BATCH_PENDING.value,
                    Job.external_batch_id.is_not(None),
                )
            )
            .order_by(Job.created_at.asc())
            .limit(limit)
        )
        if job_ids:
            query = query.where(Job.id.in_(job_ids))
        if tenant_id is not None:
            query = query.where(Job.tenant_id == tenant_id)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def complete_batch(
        self, session: AsyncSession, job_id: UUID, result: dict[str, Any]
    ) -> bool:
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.status == JobStatus.BATCH_PENDING.value))
            .values(
                status=JobStatus.COMPLETED.value,
                result=result,
                error=None,
                updated_at=utcnow(),
            )
        )
        outcome = await session.execute(stmt, execution_options=_NO_SYNC)
        return outcome.rowcount == 1

    async def fail_batch(self, session: AsyncSession, job_id: UUID, error: str) -> bool:
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.status == JobStatus.BATCH_PENDING.value))
            .values(
                status=JobStatus.FAILED.value,
                error=error,
                result=None,
                updated_at=utcnow(),
            )
        )
        outcome = await session.execute(stmt, execution_options=_NO_SYNC)
        return outcome.rowcount == 1

    async def cancel(
        self, session: AsyncSession, job_id: UUID, tenant_id: UUID | None = None
    ) -> bool:
        """Fail a job that has not started; leased jobs cannot be canceled."""
        conditions = [
            Job.id == job_id,
            Job.status.in_(
                [JobStatus.PENDING.value, JobStatus.BATCH_PENDING.value]
            ),
            Job.locked_by.is_(None),
        ]
        if tenant_id is not None:
            conditions.append(Job.tenant_id == tenant_id)

        stmt = (
            update(Job)
            .where(and_(*conditions))
            .values(
                status=JobStatus.FAILED.value,
                error=CANCELED_ERROR,
                result=None,
                updated_at=utcnow(),
            )
        )
        outcome = await session.execute(stmt, execution_options=_NO_SYNC)
        return outcome.rowcount == 1

    async def count_by_status(
        self, session: AsyncSession, tenant_id: UUID | None = None
    ) -> dict[str, int]:
        query = select(Job.status, func.count(Job.id)).group_by(Job.status)
        if tenant_id is not None:
            query = query.where(Job.tenant_id == tenant_id)
        result = await session.execute(query)
        return {status: count for status, count in result.all()}

    async def count_by_type(
        self, session: AsyncSession, tenant_id: UUID | None = None
    ) -> dict[str, int]:
        query = select(Job.type, func.count(Job.id)).group_by(Job.type)
        if tenant_id is not None:
            query = query.where(Job.tenant_id == tenant_id)
        result = await session.execute(query)
        return {job_type: count for job_type, count in result.all()}

    async def count_pending(
        self, session: AsyncSession, tenant_id: UUID | None = None
    ) -> int:
        query = select(func.count(Job.id)).where(Job.status == JobStatus.PENDING.value)
        if tenant_id is not None:
            query = query.where(Job.tenant_id == tenant_id)
        result = await session.execute(query)
        return result.scalar() or 0

    async def count_failed_since(
        self,
        session: AsyncSession,
        since: datetime,
        tenant_id: UUID | None = None,
    ) -> int:
        query = select(func.count(Job.id)).where(
            and_(Job.status == JobStatus.FAILED.value, Job.updated_at >= since)
        )
        if tenant_id is not None:
            query = query.where(Job.tenant_id == tenant_id)
        result = await session.execute(query)
        return result.scalar() or 0

    async def count_stale_leases(
        self, session: AsyncSession, now: datetime | None = None
    ) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.job_lease_timeout_s)
        result = await session.execute(
            select(func.count(Job.id)).where(
                and_(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.locked_at < cutoff,
                )
            )
        )
        return result.scalar() or 0
