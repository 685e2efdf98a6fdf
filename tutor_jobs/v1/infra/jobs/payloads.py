"""
Payload schemas per job type.

Payloads are validated against these models when a job is enqueued and parsed
again when it executes; the dumped (normalized) form is what the store keeps.
"""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobPayload(BaseModel):
    """Base payload: unknown keys are rejected so typos fail at enqueue."""

    model_config = ConfigDict(extra="forbid")


class EmptyPayload(JobPayload):
    pass


class ExtractMaterialPayload(JobPayload):
    material_id: str = Field(..., min_length=1)
    file_url: str = Field(..., min_length=1)
    file_type: str = Field(default="application/pdf")


class GenerateQuestionsPayload(JobPayload):
    topic_id: str = Field(..., min_length=1)
    topic_name: str = Field(..., min_length=1)
    description: str | None = None
    count: int = Field(default=5, ge=1, le=50)
    difficulty: Literal["easy", "medium", "hard"] = "medium"


class GenerateQuestionsBatchPayload(JobPayload):
    """Stored shape of a batch job: the items it was submitted with."""

    items: list[GenerateQuestionsPayload] = Field(..., min_length=1)


class RegenVariantPayload(JobPayload):
    question_id: UUID


class GeneratePdfPayload(JobPayload):
    title: str = Field(default="Practice Worksheet", min_length=1, max_length=200)
    question_ids: list[UUID] = Field(..., min_length=1, max_length=200)
    include_answers: bool = False
    include_hints: bool = False


class GenerateEmbeddingsPayload(JobPayload):
    question_ids: list[UUID] | None = Field(
        default=None, description="Questions to embed; all of the workspace when omitted"
    )
    force: bool = False


class RefreshMaterializedViewsPayload(JobPayload):
    views: list[str] | None = Field(
        default=None, description="Subset of the configured views; all when omitted"
    )


class ProcessBatchResultPayload(JobPayload):
    job_ids: list[UUID] | None = Field(
        default=None, description="Restrict reconciliation to these batch jobs"
    )
    limit: int = Field(default=50, ge=1, le=500)
