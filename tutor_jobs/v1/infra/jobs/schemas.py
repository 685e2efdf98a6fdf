"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    creator_id: UUID | None
    type: str
    status: str
    priority: int
    payload: dict[str, Any]

    # Outcome
    result: dict[str, Any] | None = None
    error: str | None = None

    # Retry bookkeeping
    attempts: int
    max_attempts: int
    run_after: datetime

    # Lease
    locked_by: str | None = None
    locked_at: datetime | None = None

    external_batch_id: str | None = None
    created_at: datetime
    updated_at: datetime


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    priority: int | None = Field(
        default=None, ge=0, le=100, description="Priority (higher runs first)"
    )
    delay_seconds: float = Field(
        default=0, ge=0, description="Seconds before the job becomes eligible"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, le=25, description="Override the configured attempt limit"
    )
    run_now: bool = Field(
        default=False, description="Execute immediately within this request"
    )


class JobBatchEnqueueRequest(BaseModel):
    """Schema for submitting a batch job via API."""

    type: str = Field(..., description="Batch-capable job type")
    items: list[dict[str, Any]] = Field(..., min_length=1, description="Batch items")
    priority: int | None = Field(default=None, ge=0, le=100)


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID
    status: str
    external_batch_id: str | None = None
    job: JobResponse | None = Field(
        default=None, description="Job snapshot after an immediate run"
    )


class ProcessJobsResponse(BaseModel):
    processed: int
    worker_id: str


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + processing
    batch_pending: int
    failed_last_hour: int
