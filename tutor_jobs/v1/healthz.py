from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.logging import get_logger
from tutor_jobs.config.settings import Settings, SettingsDep
from tutor_jobs.infra.database import get_session
from tutor_jobs.v1.core.exceptions import create_success_response
from tutor_jobs.v1.infra.jobs.models import JobStatus
from tutor_jobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue status."""

    queue_depth: int = 0
    pending: int = 0
    stale_leases: int = 0
    batch_pending: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and queue status."""

    timestamp = datetime.now(UTC).isoformat()
    overall_ok = True

    db_health = await _check_database_health(session)
    if not db_health.connected:
        overall_ok = False

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except Exception as e:
            # Queue health failure doesn't fail overall health
            logger.warning("Queue health check failed", error=str(e))
            queue_health = QueueHealth()

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Queue depth, stale leases awaiting the sweep, and parked batches."""
    store = JobStore(settings)
    by_status = await store.count_by_status(session)
    pending = by_status.get(JobStatus.PENDING.value, 0)

    return QueueHealth(
        queue_depth=pending + by_status.get(JobStatus.PROCESSING.value, 0),
        pending=pending,
        stale_leases=await store.count_stale_leases(session),
        batch_pending=by_status.get(JobStatus.BATCH_PENDING.value, 0),
    )
