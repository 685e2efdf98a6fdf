"""
Batch submission: delegates a job's items to the external batch API and parks
the job as ``batch_pending`` until reconciliation picks up the results.
"""

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

import pydantic
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.logging import get_logger
from tutor_jobs.config.settings import Settings, settings as default_settings
from tutor_jobs.infra.database import utcnow
from tutor_jobs.v1.core.exceptions import ExternalBatchError, ValidationError
from tutor_jobs.v1.core.registries import BatchJobHandler, JobRegistry, job_registry
from tutor_jobs.v1.infra.jobs.models import Job, JobStatus
from tutor_jobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)

BATCH_ENDPOINT = "/v1/chat/completions"


def make_custom_id(job_id: UUID, index: int) -> str:
    return f"{job_id}:{index}"


class BatchState(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class BatchItemResult:
    """Outcome of one request line of an external batch."""

    custom_id: str
    content: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.content is not None


@dataclass
class BatchPoll:
    state: BatchState
    results: dict[str, BatchItemResult] = field(default_factory=dict)
    reason: str | None = None

    @classmethod
    def running(cls) -> "BatchPoll":
        return cls(BatchState.RUNNING)

    @classmethod
    def complete(cls, results: list[BatchItemResult]) -> "BatchPoll":
        return cls(BatchState.COMPLETE, results={r.custom_id: r for r in results})

    @classmethod
    def failed(cls, reason: str) -> "BatchPoll":
        return cls(BatchState.FAILED, reason=reason)


class BatchClient(Protocol):
    """Boundary to the external batch API."""

    async def submit(self, requests: list[dict[str, Any]], metadata: dict[str, str]) -> str:
        """Submit request lines; returns the external batch handle."""
        ...

    async def poll(self, handle: str) -> BatchPoll:
        """Report whether the batch is running, complete or failed."""
        ...


def parse_result_line(line: dict[str, Any]) -> BatchItemResult:
    """Map one line of a batch output or error file to an item result."""
    custom_id = line.get("custom_id", "")
    error = line.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return BatchItemResult(custom_id, error=message or "Request failed")

    response = line.get("response") or {}
    status_code = response.get("status_code", 200)
    body = response.get("body") or {}
    if status_code >= 400:
        message = (body.get("error") or {}).get("message") or f"HTTP {status_code}"
        return BatchItemResult(custom_id, error=message)

    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if content is None:
        return BatchItemResult(custom_id, error="Response has no completion content")
    return BatchItemResult(custom_id, content=content)


class OpenAIBatchClient:
    """BatchClient over the OpenAI Batch API."""

    RUNNING_STATUSES = {"validating", "in_progress", "finalizing", "cancelling"}
    FAILED_STATUSES = {"failed", "expired", "cancelled"}

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        """Lazy load OpenAI client."""
        if self._client is None:
            if not self.settings.openai_api_key:
                raise ExternalBatchError("OPENAI_API_KEY is required for batch submission")
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def submit(self, requests: list[dict[str, Any]], metadata: dict[str, str]) -> str:
        client = self._get_client()
        jsonl = "\n".join(json.dumps(r) for r in requests).encode("utf-8")
        upload = await client.files.create(
            file=("batch_requests.jsonl", jsonl, "application/jsonl"),
            purpose="batch",
        )
        batch = await client.batches.create(
            input_file_id=upload.id,
            endpoint=BATCH_ENDPOINT,
            completion_window=self.settings.batch_completion_window,
            metadata=metadata,
        )
        return batch.id

    async def _read_lines(self, file_id: str | None) -> list[dict[str, Any]]:
        if not file_id:
            return []
        content = await self._get_client().files.content(file_id)
        return [json.loads(line) for line in content.text.splitlines() if line.strip()]

    async def poll(self, handle: str) -> BatchPoll:
        batch = await self._get_client().batches.retrieve(handle)
        if batch.status in self.RUNNING_STATUSES:
            return BatchPoll.running()
        if batch.status in self.FAILED_STATUSES:
            return BatchPoll.failed(f"Batch {batch.status}")
        if batch.status != "completed":
            return BatchPoll.running()

        lines = await self._read_lines(batch.output_file_id)
        lines += await self._read_lines(batch.error_file_id)
        return BatchPoll.complete([parse_result_line(line) for line in lines])


class BatchSubmissionAdapter:
    """
    Submits a batch-capable job to the external API and persists it.

    The row is only written after the external submission succeeds, so a
    failed submission leaves nothing behind.
    """

    def __init__(
        self,
        settings: Settings,
        client: BatchClient,
        registry: JobRegistry | None = None,
        store: JobStore | None = None,
    ):
        self.settings = settings
        self.client = client
        self.registry = registry or job_registry
        self.store = store or JobStore(settings)

    def _handler(self, job_type: str) -> BatchJobHandler:
        if job_type not in self.registry:
            raise ValidationError(f"Unknown job type: {job_type}", {"type": job_type})
        handler = self.registry.get(job_type)
        if not isinstance(handler, BatchJobHandler):
            raise ValidationError(
                f"Job type {job_type} does not support batch submission",
                {"type": job_type},
            )
        return handler

    def _validate_items(
        self, handler: BatchJobHandler, items: list[dict[str, Any]]
    ) -> list[pydantic.BaseModel]:
        if not items:
            raise ValidationError("Batch must contain at least one item")
        parsed = []
        for index, item in enumerate(items):
            try:
                parsed.append(handler.item_model.model_validate(item))
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Invalid batch item at index {index}",
                    {"index": index, "errors": e.errors(include_url=False, include_context=False)},
                ) from e
        return parsed

    async def submit(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        creator_id: UUID | None,
        job_type: str,
        items: list[dict[str, Any]],
        priority: int | None = None,
    ) -> Job:
        handler = self._handler(job_type)
        parsed = self._validate_items(handler, items)

        job_id = uuid.uuid4()
        requests = [
            handler.build_request(make_custom_id(job_id, index), item)
            for index, item in enumerate(parsed)
        ]
        metadata = {"job_id": str(job_id), "tenant_id": str(tenant_id)}

        try:
            handle = await self.client.submit(requests, metadata)
        except ExternalBatchError:
            raise
        except Exception as e:
            logger.error(
                "Batch submission failed",
                job_id=str(job_id),
                job_type=job_type,
                error=str(e),
            )
            raise ExternalBatchError(
                f"Batch submission failed: {e}", {"type": job_type}
            ) from e

        now = utcnow()
        job = Job(
            id=job_id,
            tenant_id=tenant_id,
            creator_id=creator_id,
            type=job_type,
            status=JobStatus.BATCH_PENDING.value,
            priority=self.settings.job_default_priority if priority is None else priority,
            payload={"items": [item.model_dump(mode="json") for item in parsed]},
            attempts=0,
            max_attempts=self.settings.job_max_attempts,
            run_after=now,
            external_batch_id=handle,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(session, job)

        logger.info(
            "Batch submitted",
            job_id=str(job_id),
            job_type=job_type,
            external_batch_id=handle,
            item_count=len(parsed),
        )
        return job


# Batch client instance management
_batch_client: BatchClient | None = None


def get_batch_client(settings: Settings | None = None) -> BatchClient:
    """Get or create the batch client."""
    global _batch_client
    if _batch_client is None:
        _batch_client = OpenAIBatchClient(settings or default_settings)
    return _batch_client


def set_batch_client(client: BatchClient | None) -> None:
    """Swap the batch client (tests and alternative providers)."""
    global _batch_client
    _batch_client = client
