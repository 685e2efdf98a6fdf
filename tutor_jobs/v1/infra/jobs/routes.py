"""
Job API endpoints.

Enqueue, batch enqueue, status polling, cancellation, statistics and the
dispatch trigger invoked by cron.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.settings import Settings, SettingsDep
from tutor_jobs.infra.database import get_session
from tutor_jobs.v1.core.exceptions import create_success_response
from tutor_jobs.v1.core.security import CronSecretDep, Principal, PrincipalDep
from tutor_jobs.v1.infra.jobs.schemas import (
    JobBatchEnqueueRequest,
    JobEnqueueRequest,
    JobEnqueueResponse,
    JobResponse,
    ProcessJobsResponse,
)
from tutor_jobs.v1.infra.jobs.service import JobService
from tutor_jobs.v1.infra.jobs.worker import JobDispatcher, get_dispatcher

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    """Enqueue a background job, optionally running it right away."""

    job_service = JobService(settings)
    job = await job_service.enqueue(
        session,
        tenant_id=principal.workspace_uuid,
        creator_id=principal.user_uuid,
        job_type=job_request.type,
        payload=job_request.payload,
        priority=job_request.priority,
        delay_seconds=job_request.delay_seconds,
        max_attempts=job_request.max_attempts,
    )

    response = JobEnqueueResponse(job_id=job.id, status=job.status)
    if job_request.run_now:
        await dispatcher.process_jobs(1, job_ids=[job.id])
        job = await job_service.get_job(session, job.id)
        response = JobEnqueueResponse(
            job_id=job.id, status=job.status, job=JobResponse.model_validate(job)
        )

    return create_success_response(data=response.model_dump(mode="json"))


@router.post("/batch", response_model=dict)
async def enqueue_batch_job(
    batch_request: JobBatchEnqueueRequest,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Submit a batch job to the external batch API."""

    job_service = JobService(settings)
    job = await job_service.enqueue_batch(
        session,
        tenant_id=principal.workspace_uuid,
        creator_id=principal.user_uuid,
        job_type=batch_request.type,
        items=batch_request.items,
        priority=batch_request.priority,
    )

    response = JobEnqueueResponse(
        job_id=job.id, status=job.status, external_batch_id=job.external_batch_id
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.post("/process", response_model=dict, dependencies=[CronSecretDep])
async def process_jobs(
    limit: int | None = Query(default=None, ge=1, le=100, description="Jobs to claim"),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    """Dispatch trigger: claim and execute eligible jobs."""

    processed = await dispatcher.process_jobs(limit)

    logger.info(
        "Dispatch trigger handled",
        extra={"processed": processed, "worker_id": dispatcher.worker_id},
    )

    response = ProcessJobsResponse(processed=processed, worker_id=dispatcher.worker_id)
    return create_success_response(data=response.model_dump())


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get job statistics for the workspace."""

    job_service = JobService(settings)
    stats = await job_service.get_job_stats(session, principal.workspace_uuid)

    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job_service = JobService(settings)
    job = await job_service.get_job(session, job_id, principal.workspace_uuid)

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Cancel a pending or batch_pending job."""

    job_service = JobService(settings)
    job = await job_service.get_job(session, job_id, principal.workspace_uuid)
    success = await job_service.cancel_job(session, job_id, principal.workspace_uuid)

    if not success:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job in status '{job.status}' cannot be canceled",
        )

    logger.info(
        "Job canceled via API",
        extra={
            "job_id": str(job_id),
            "tenant_id": str(principal.workspace_uuid),
            "user_id": principal.user_id,
        },
    )

    return create_success_response(data={"success": True, "job_id": str(job_id)})
