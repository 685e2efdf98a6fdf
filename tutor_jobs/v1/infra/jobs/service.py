"""
Job service for enqueueing and managing background jobs.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any
from uuid import UUID

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.settings import Settings
from tutor_jobs.infra.database import utcnow
from tutor_jobs.v1.core.exceptions import NotFoundError, ValidationError
from tutor_jobs.v1.core.registries import JobRegistry, job_registry
from tutor_jobs.v1.infra.jobs.batch import BatchClient, BatchSubmissionAdapter, get_batch_client
from tutor_jobs.v1.infra.jobs.models import Job, JobStatus
from tutor_jobs.v1.infra.jobs.schemas import JobStatsResponse
from tutor_jobs.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)


class JobService:
    """Service for managing background jobs."""

    def __init__(
        self,
        settings: Settings,
        registry: JobRegistry | None = None,
        store: JobStore | None = None,
        batch_client: BatchClient | None = None,
    ):
        self.settings = settings
        self.registry = registry or job_registry
        self.store = store or JobStore(settings)
        self._batch_client = batch_client

    def _validate_payload(self, job_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        if job_type not in self.registry:
            raise ValidationError(f"Unknown job type: {job_type}", {"type": job_type})
        if self.registry.is_batch_type(job_type):
            raise ValidationError(
                f"Job type {job_type} must be submitted as a batch",
                {"type": job_type},
            )
        handler = self.registry.get(job_type)
        try:
            parsed = handler.payload_model.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid payload for {job_type}",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        return parsed.model_dump(mode="json")

    async def enqueue(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        creator_id: UUID | None,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: int | None = None,
        delay_seconds: float = 0,
        max_attempts: int | None = None,
    ) -> Job:
        """
        Validate and persist a pending job.

        Args:
            session: Database session
            tenant_id: Workspace the job belongs to
            creator_id: Requesting user, if any
            job_type: Registered, non-batch job type
            payload: Parameters validated against the type's schema
            priority: Higher runs first; configured default when omitted
            delay_seconds: Seconds before the job becomes eligible
            max_attempts: Override of the configured attempt limit

        Returns:
            The persisted job
        """
        if delay_seconds < 0:
            raise ValidationError("delay_seconds must be >= 0")
        if max_attempts is not None and max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")
        normalized = self._validate_payload(job_type, payload or {})

        now = utcnow()
        job = Job(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            creator_id=creator_id,
            type=job_type,
            status=JobStatus.PENDING.value,
            priority=self.settings.job_default_priority if priority is None else priority,
            payload=normalized,
            attempts=0,
            max_attempts=max_attempts or self.settings.job_max_attempts,
            run_after=now + timedelta(seconds=delay_seconds),
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(session, job)
        await session.commit()

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "type": job.type,
                "priority": job.priority,
                "tenant_id": str(tenant_id),
                "run_after": job.run_after.isoformat(),
            },
        )
        return job

    async def enqueue_batch(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        creator_id: UUID | None,
        job_type: str,
        items: list[dict[str, Any]],
        priority: int | None = None,
    ) -> Job:
        """Submit a batch job to the external API; nothing is stored if that fails."""
        adapter = BatchSubmissionAdapter(
            self.settings,
            self._batch_client or get_batch_client(self.settings),
            registry=self.registry,
            store=self.store,
        )
        job = await adapter.submit(
            session, tenant_id, creator_id, job_type, items, priority=priority
        )
        await session.commit()
        return job

    async def get_job(
        self, session: AsyncSession, job_id: UUID, tenant_id: UUID | None = None
    ) -> Job:
        """Get job by ID with optional tenant scoping."""
        job = await self.store.get(session, job_id, tenant_id)
        if job is None:
            raise NotFoundError("Job not found", {"job_id": str(job_id)})
        return job

    async def cancel_job(
        self, session: AsyncSession, job_id: UUID, tenant_id: UUID | None = None
    ) -> bool:
        """Cancel a job that has not started. Leased jobs are left alone."""
        success = await self.store.cancel(session, job_id, tenant_id)
        await session.commit()

        if success:
            logger.info(
                "Job canceled",
                extra={
                    "job_id": str(job_id),
                    "tenant_id": str(tenant_id) if tenant_id else None,
                },
            )
        return success

    async def count_pending(
        self, session: AsyncSession, tenant_id: UUID | None = None
    ) -> int:
        return await self.store.count_pending(session, tenant_id)

    async def get_job_stats(
        self, session: AsyncSession, tenant_id: UUID | None = None
    ) -> JobStatsResponse:
        """Get job statistics, optionally scoped to a tenant."""
        by_status = await self.store.count_by_status(session, tenant_id)
        by_type = await self.store.count_by_type(session, tenant_id)
        failed_last_hour = await self.store.count_failed_since(
            session, utcnow() - timedelta(hours=1), tenant_id
        )

        # Queue depth (pending + processing)
        queue_depth = by_status.get(JobStatus.PENDING.value, 0) + by_status.get(
            JobStatus.PROCESSING.value, 0
        )

        return JobStatsResponse(
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            batch_pending=by_status.get(JobStatus.BATCH_PENDING.value, 0),
            failed_last_hour=failed_last_hour,
        )
