"""
Reconciliation: the PROCESS_BATCH_RESULT job type.

Polls the external batch API for every ``batch_pending`` job and advances the
ones whose batch finished. Everything it writes commits with its own
completion, so a reconciliation run that loses its lease leaves the batch
jobs untouched for the next run.
"""

from collections.abc import Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.logging import get_logger
from tutor_jobs.config.settings import Settings
from tutor_jobs.v1.core.registries import (
    BatchJobHandler,
    JobContext,
    JobRegistry,
    job_registry,
)
from tutor_jobs.v1.infra.jobs.batch import (
    BatchClient,
    BatchPoll,
    BatchState,
    get_batch_client,
    make_custom_id,
)
from tutor_jobs.v1.infra.jobs.models import Job
from tutor_jobs.v1.infra.jobs.payloads import ProcessBatchResultPayload
from tutor_jobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class ProcessBatchResultHandler:
    """
    Job handler that reconciles external batches.

    Payload expected:
    {
        "job_ids": ["uuid", ...] | null,  # optional restriction
        "limit": 50
    }

    Result:
    {"checked", "still_running", "completed", "failed", "errors": [...]}

    Without ``job_ids`` this is the operator sweep over every tenant's
    batches. An explicit ``job_ids`` list only reaches batches of the tenant
    that enqueued the reconciliation.
    """

    payload_model = ProcessBatchResultPayload

    def __init__(
        self,
        settings: Settings,
        client_factory: Callable[[], BatchClient] | None = None,
        registry: JobRegistry | None = None,
        store: JobStore | None = None,
    ):
        self.settings = settings
        self.client_factory = client_factory or (lambda: get_batch_client(settings))
        self.registry = registry or job_registry
        self.store = store or JobStore(settings)

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: ProcessBatchResultPayload,
    ) -> dict[str, Any]:
        client = self.client_factory()
        jobs = await self.store.list_batch_pending(
            session,
            payload.limit,
            job_ids=payload.job_ids,
            tenant_id=ctx.tenant_id if payload.job_ids else None,
        )

        report: dict[str, Any] = {
            "checked": len(jobs),
            "still_running": 0,
            "completed": 0,
            "failed": 0,
            "errors": [],
        }

        for batch_job in jobs:
            try:
                poll = await client.poll(batch_job.external_batch_id)
            except Exception as e:
                logger.warning(
                    "Batch poll failed",
                    job_id=str(batch_job.id),
                    external_batch_id=batch_job.external_batch_id,
                    error=str(e),
                )
                report["errors"].append({"job_id": str(batch_job.id), "error": str(e)})
                continue

            handler = self._batch_handler(batch_job.type)
            if poll.state == BatchState.RUNNING:
                report["still_running"] += 1
            elif poll.state == BatchState.FAILED or handler is None:
                if poll.state == BatchState.FAILED:
                    reason = poll.reason or "External batch failed"
                else:
                    reason = f"No batch handler registered for job type {batch_job.type}"
                if await self.store.fail_batch(session, batch_job.id, reason):
                    report["failed"] += 1
                    logger.warning(
                        "Batch job failed",
                        job_id=str(batch_job.id),
                        external_batch_id=batch_job.external_batch_id,
                        reason=reason,
                    )
            else:
                sub_report = await self._materialize(session, handler, batch_job, poll)
                if await self.store.complete_batch(session, batch_job.id, sub_report):
                    report["completed"] += 1
                    logger.info(
                        "Batch job completed",
                        job_id=str(batch_job.id),
                        external_batch_id=batch_job.external_batch_id,
                        succeeded=sub_report["succeeded"],
                        failed=sub_report["failed"],
                    )

        return report

    def _batch_handler(self, job_type: str) -> BatchJobHandler | None:
        if job_type not in self.registry:
            return None
        handler = self.registry.get(job_type)
        return handler if isinstance(handler, BatchJobHandler) else None

    async def _materialize(
        self,
        session: AsyncSession,
        handler: BatchJobHandler,
        batch_job: Job,
        poll: BatchPoll,
    ) -> dict[str, Any]:
        """Materialize every item of a finished batch, each in its own savepoint."""
        items_report: list[dict[str, Any]] = []
        sub_report: dict[str, Any] = {
            "external_batch_id": batch_job.external_batch_id,
            "items": items_report,
            "succeeded": 0,
            "failed": 0,
        }

        ctx = JobContext(
            job_id=batch_job.id,
            job_type=batch_job.type,
            tenant_id=batch_job.tenant_id,
            creator_id=batch_job.creator_id,
            attempts=batch_job.attempts,
            max_attempts=batch_job.max_attempts,
        )

        for index, raw_item in enumerate(batch_job.payload.get("items", [])):
            custom_id = make_custom_id(batch_job.id, index)
            result = poll.results.get(custom_id)
            if result is None:
                error = "No result returned for item"
            elif not result.ok:
                error = result.error or "Request failed"
            else:
                try:
                    async with session.begin_nested():
                        item = handler.item_model.model_validate(raw_item)
                        entity_ids = await handler.materialize(
                            session, ctx, index, item, result
                        )
                except Exception as e:
                    error = str(e) or e.__class__.__name__
                else:
                    items_report.append(
                        {"index": index, "status": "succeeded", "entity_ids": entity_ids}
                    )
                    sub_report["succeeded"] += 1
                    continue

            items_report.append({"index": index, "status": "failed", "error": error})
            sub_report["failed"] += 1
            logger.warning(
                "Batch item failed",
                job_id=str(batch_job.id),
                index=index,
                error=error,
            )

        return sub_report
