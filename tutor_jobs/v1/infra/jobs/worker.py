"""
Dispatcher: claims eligible jobs and runs them through their handlers.

``process_jobs`` is invoked once per external trigger (cron, HTTP, CLI) and
returns when the claimed batch is done. Several invocations may overlap; the
atomic claim and lease-checked releases keep them from stepping on each other.
"""

import os
import secrets
import socket
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tutor_jobs.config.logging import dispatch_context, get_logger
from tutor_jobs.config.settings import Settings, get_settings
from tutor_jobs.infra.database import get_database, utcnow
from tutor_jobs.v1.core.exceptions import PermanentJobError
from tutor_jobs.v1.core.registries import JobContext, JobRegistry, job_registry
from tutor_jobs.v1.infra.jobs.models import Job
from tutor_jobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


def backoff_delay(attempts: int, base_seconds: float, max_seconds: float) -> timedelta:
    """Exponential retry delay after ``attempts`` failed attempts.

    ``min(max, base * 2 ** (attempts - 1))``; no jitter, so delays never
    shrink as attempts grow.
    """
    exponent = max(0, attempts - 1)
    try:
        delay = base_seconds * (2**exponent)
    except OverflowError:
        delay = max_seconds
    return timedelta(seconds=min(max_seconds, delay))


def make_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{secrets.token_hex(4)}"


def _error_message(exc: BaseException) -> str:
    message = str(exc) or exc.__class__.__name__
    return message[:2000]


class JobDispatcher:
    """
    Runs claimed jobs sequentially.

    Features:
    - Stale-lease sweep before every claim
    - UPDATE ... FOR UPDATE SKIP LOCKED claim in priority/FIFO order
    - Handler writes and completion commit in one transaction
    - Exponential backoff for transient failures, immediate failure for
      permanent ones
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        registry: JobRegistry | None = None,
        store: JobStore | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.registry = registry or job_registry
        self.store = store or JobStore(settings)
        self.worker_id = make_worker_id()

    async def sweep(self) -> int:
        """Recover stale leases; returns the number of jobs recovered."""
        async with self.session_factory() as session:
            recovered = await self.store.sweep_stale_leases(session)
            await session.commit()
        return recovered

    async def process_jobs(
        self, limit: int | None = None, job_ids: list[UUID] | None = None
    ) -> int:
        """
        Sweep, claim up to ``limit`` jobs and execute them.

        Returns:
            Number of jobs that completed or failed an attempt in this call
        """
        limit = self.settings.job_dispatch_limit if limit is None else limit

        with dispatch_context(self.worker_id):
            await self.sweep()

            async with self.session_factory() as session:
                claimed = await self.store.claim(
                    session, self.worker_id, limit, job_ids=job_ids
                )
                await session.commit()

            if not claimed:
                return 0

            logger.info(
                "Claimed jobs",
                job_count=len(claimed),
                job_ids=[str(job.id) for job in claimed],
            )

            processed = 0
            for job in claimed:
                if await self._run(job):
                    processed += 1
            return processed

    async def _run(self, job: Job) -> bool:
        """Execute one claimed job; False if its lease was lost meanwhile."""
        log = logger.bind(job_id=str(job.id), job_type=job.type)
        ctx = JobContext(
            job_id=job.id,
            job_type=job.type,
            tenant_id=job.tenant_id,
            creator_id=job.creator_id,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
        )

        async with self.session_factory() as session:
            try:
                if job.type not in self.registry:
                    raise PermanentJobError(f"No handler registered for job type {job.type}")
                handler = self.registry.get(job.type)
                try:
                    payload = handler.payload_model.model_validate(job.payload)
                except pydantic.ValidationError as exc:
                    raise PermanentJobError(f"Invalid payload: {exc}") from exc

                log.info("Processing job started", attempt=job.attempts + 1)
                result = await handler.handle(session, ctx, payload)
                released = await self.store.complete(session, job, result or {})
                if not released:
                    await session.rollback()
                    log.warning("Lease lost before completion, discarding results")
                    return False
                await session.commit()
                log.info("Processing job completed")
                return True

            except Exception as exc:
                await session.rollback()
                return await self._record_failure(session, job, exc, log)

    async def _record_failure(
        self, session: AsyncSession, job: Job, exc: Exception, log: Any
    ) -> bool:
        attempts = job.attempts + 1
        message = _error_message(exc)
        retry_at: datetime | None = None
        if not isinstance(exc, PermanentJobError) and attempts < job.max_attempts:
            retry_at = utcnow() + backoff_delay(
                attempts,
                self.settings.job_backoff_base_s,
                self.settings.job_max_backoff_s,
            )

        released = await self.store.fail(session, job, message, retry_at=retry_at)
        if not released:
            await session.rollback()
            log.warning("Lease lost before failure could be recorded", error=message)
            return False
        await session.commit()

        if retry_at is not None:
            log.warning(
                "Job scheduled for retry",
                error=message,
                attempts=attempts,
                run_after=retry_at.isoformat(),
            )
        else:
            log.error(
                "Job failed",
                error=message,
                attempts=attempts,
                permanent=isinstance(exc, PermanentJobError),
            )
        return True


# Dispatcher instance management
_dispatcher_instance: JobDispatcher | None = None


def get_dispatcher() -> JobDispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher_instance
    if _dispatcher_instance is None:
        _dispatcher_instance = JobDispatcher(get_settings(), get_database().WorkerSessionLocal)
    return _dispatcher_instance


def set_dispatcher(dispatcher: JobDispatcher | None) -> None:
    """Swap the process-wide dispatcher (application startup and tests)."""
    global _dispatcher_instance
    _dispatcher_instance = dispatcher
