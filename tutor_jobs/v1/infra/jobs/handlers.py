"""
Job handlers for every job type.

Handlers implement the JobHandler protocol and are registered in the job
registry. They run at-least-once: every side effect is keyed so that running
the same job twice leaves the same state behind.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any

import pydantic
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.settings import Settings
from tutor_jobs.infra.database import utcnow
from tutor_jobs.v1.core.exceptions import PermanentJobError, TransientJobError
from tutor_jobs.v1.core.registries import (
    JobContext,
    material_extractor_registry,
    pdf_renderer_registry,
    question_generator_registry,
    vectorizer_registry,
)
from tutor_jobs.v1.gen.prompts import build_chat_request, parse_questions_content
from tutor_jobs.v1.infra.jobs.batch import BATCH_ENDPOINT, BatchItemResult
from tutor_jobs.v1.infra.jobs.payloads import (
    EmptyPayload,
    ExtractMaterialPayload,
    GenerateEmbeddingsPayload,
    GeneratePdfPayload,
    GenerateQuestionsBatchPayload,
    GenerateQuestionsPayload,
    RefreshMaterializedViewsPayload,
    RegenVariantPayload,
)
from tutor_jobs.v1.questions.models import GeneratedQuestion, QuestionOrigin
from tutor_jobs.v1.questions.service import (
    existing_source_keys,
    load_questions,
    materialize_drafts,
    parse_drafts,
    topic_prompts,
)
from tutor_jobs.v1.search.vectorizers import content_hash

logger = logging.getLogger(__name__)


def _key_order(key: str) -> int:
    return int(key.rsplit(":", 1)[-1])


class ExtractMaterialHandler:
    """
    Extract structured study content from an uploaded file.

    Payload expected:
    {
        "material_id": "string",
        "file_url": "https://...",
        "file_type": "application/pdf" | "image/png" | "text/plain" | ...
    }
    """

    payload_model = ExtractMaterialPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: ExtractMaterialPayload,
    ) -> dict[str, Any]:
        extractor = material_extractor_registry.get(self.settings.material_extractor.value)
        analysis = await extractor.extract(payload.file_url, payload.file_type)

        logger.info(
            "Material extracted",
            extra={
                "job_id": str(ctx.job_id),
                "material_id": payload.material_id,
                "topic_count": len(analysis.get("topics", [])),
            },
        )
        return {"material_id": payload.material_id, "analysis": analysis}


class GenerateQuestionsHandler:
    """
    Generate questions for a topic and add them to the workspace bank.

    Questions are keyed ``"0:{n}"`` under the job id; a re-run that finds the
    full set already present returns it without calling the generator.
    """

    payload_model = GenerateQuestionsPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: GenerateQuestionsPayload,
    ) -> dict[str, Any]:
        existing = await existing_source_keys(session, ctx.job_id, "0:")
        if len(existing) >= payload.count:
            ids = [str(existing[k]) for k in sorted(existing, key=_key_order)]
            return {"topic_id": payload.topic_id, "question_ids": ids, "count": len(ids)}

        generator = question_generator_registry.get(self.settings.question_generator.value)
        avoid = await topic_prompts(session, ctx.tenant_id, payload.topic_id)
        raw = await generator.generate(
            payload.topic_name,
            payload.description,
            payload.count,
            payload.difficulty,
            avoid=avoid,
        )
        try:
            drafts = parse_drafts(raw[: payload.count])
        except pydantic.ValidationError as e:
            raise TransientJobError(f"Generator returned malformed questions: {e}") from e
        if not drafts:
            raise TransientJobError("Generator returned no questions")

        ids = await materialize_drafts(
            session,
            workspace_id=ctx.tenant_id,
            topic_id=payload.topic_id,
            drafts=drafts,
            source_job_id=ctx.job_id,
            key_prefix="0",
            created_by=ctx.creator_id,
        )

        logger.info(
            "Questions generated",
            extra={
                "job_id": str(ctx.job_id),
                "topic_id": payload.topic_id,
                "count": len(ids),
            },
        )
        return {"topic_id": payload.topic_id, "question_ids": ids, "count": len(ids)}


class GenerateQuestionsBatchHandler:
    """
    Batched question generation through the external batch API.

    Each item becomes one chat-completions request; reconciliation hands the
    completions back to ``materialize``, which keys questions ``"{index}:{n}"``.
    """

    payload_model = GenerateQuestionsBatchPayload
    item_model = GenerateQuestionsPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_request(self, custom_id: str, item: GenerateQuestionsPayload) -> dict[str, Any]:
        return {
            "custom_id": custom_id,
            "method": "POST",
            "url": BATCH_ENDPOINT,
            "body": build_chat_request(
                self.settings.batch_model,
                item.topic_name,
                item.description,
                item.count,
                item.difficulty,
            ),
        }

    async def materialize(
        self,
        session: AsyncSession,
        ctx: JobContext,
        index: int,
        item: GenerateQuestionsPayload,
        result: BatchItemResult,
    ) -> list[str]:
        drafts = parse_drafts(parse_questions_content(result.content)[: item.count])
        return await materialize_drafts(
            session,
            workspace_id=ctx.tenant_id,
            topic_id=item.topic_id,
            drafts=drafts,
            source_job_id=ctx.job_id,
            key_prefix=str(index),
            created_by=ctx.creator_id,
        )

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: GenerateQuestionsBatchPayload,
    ) -> dict[str, Any]:
        raise PermanentJobError(
            "GENERATE_QUESTIONS_BATCH runs through the external batch API and "
            "is advanced by PROCESS_BATCH_RESULT"
        )


class RegenVariantHandler:
    """Create one variant of an existing question (key ``"variant:0"``)."""

    payload_model = RegenVariantPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: RegenVariantPayload,
    ) -> dict[str, Any]:
        existing = await existing_source_keys(session, ctx.job_id, "variant:")
        if existing:
            return {
                "question_id": str(payload.question_id),
                "variant_id": str(next(iter(existing.values()))),
            }

        original = await session.get(GeneratedQuestion, payload.question_id)
        if original is None or original.workspace_id != ctx.tenant_id:
            raise PermanentJobError(f"Question {payload.question_id} not found")

        generator = question_generator_registry.get(self.settings.question_generator.value)
        raw = await generator.generate_variant(
            {
                "questionLatex": original.prompt_latex or original.prompt_text,
                "answerLatex": (original.answer or {}).get("latex"),
                "answerValue": (original.answer or {}).get("value"),
                "answerType": original.answer_type,
                "difficulty": original.difficulty,
                "hints": original.hints,
                "solutionSteps": original.solution_steps,
                "tags": original.tags,
            }
        )
        try:
            drafts = parse_drafts([raw])
        except pydantic.ValidationError as e:
            raise TransientJobError(f"Generator returned a malformed variant: {e}") from e

        ids = await materialize_drafts(
            session,
            workspace_id=ctx.tenant_id,
            topic_id=original.topic_id,
            drafts=drafts,
            source_job_id=ctx.job_id,
            key_prefix="variant",
            created_by=ctx.creator_id,
            origin=QuestionOrigin.AI_VARIANT,
            parent_question_id=original.id,
        )
        return {"question_id": str(original.id), "variant_id": ids[0]}


class GeneratePdfHandler:
    """
    Render a worksheet PDF and store it under the artifact directory.

    The artifact path is derived from the job id, so a re-run overwrites the
    same file.
    """

    payload_model = GeneratePdfPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    def _artifact_path(self, ctx: JobContext) -> Path:
        return Path(self.settings.artifact_dir) / str(ctx.tenant_id) / f"{ctx.job_id}.pdf"

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: GeneratePdfPayload,
    ) -> dict[str, Any]:
        questions = await load_questions(session, ctx.tenant_id, payload.question_ids)
        if not questions:
            raise PermanentJobError("No questions found")

        renderer = pdf_renderer_registry.get("reportlab")
        pdf_bytes = await asyncio.to_thread(
            renderer.render,
            payload.title,
            [q.as_render_dict() for q in questions],
            payload.include_answers,
            payload.include_hints,
        )

        path = self._artifact_path(ctx)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, pdf_bytes)

        logger.info(
            "Worksheet rendered",
            extra={
                "job_id": str(ctx.job_id),
                "question_count": len(questions),
                "bytes": len(pdf_bytes),
            },
        )
        return {
            "artifact_path": str(path),
            "bytes": len(pdf_bytes),
            "sha256": hashlib.sha256(pdf_bytes).hexdigest(),
            "title": payload.title,
            "question_count": len(questions),
            "missing_question_ids": [
                str(qid)
                for qid in payload.question_ids
                if qid not in {q.id for q in questions}
            ],
        }


class GenerateEmbeddingsHandler:
    """
    Compute embeddings for questions whose content changed.

    Payload expected:
    {
        "question_ids": ["uuid", ...] | null,  # whole workspace when null
        "force": false
    }
    """

    payload_model = GenerateEmbeddingsPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: GenerateEmbeddingsPayload,
    ) -> dict[str, Any]:
        vectorizer = vectorizer_registry.get(self.settings.embeddings.value)
        model_version = vectorizer.get_model_version()
        questions = await load_questions(session, ctx.tenant_id, payload.question_ids)

        embedded = skipped = 0
        for question in questions:
            text_hash = content_hash(question.embedding_text())
            if (
                not payload.force
                and question.embedding_hash == text_hash
                and question.embedding_model == model_version
            ):
                skipped += 1
                continue
            question.embedding = await vectorizer.vectorize(question.embedding_text())
            question.embedding_hash = text_hash
            question.embedding_model = model_version
            embedded += 1
        await session.flush()

        logger.info(
            "Embeddings computed",
            extra={"job_id": str(ctx.job_id), "embedded": embedded, "skipped": skipped},
        )
        return {
            "total": len(questions),
            "embedded": embedded,
            "skipped": skipped,
            "model_version": model_version,
        }


class DailySpacedRepRefreshHandler:
    """Nightly review-queue refresh for a workspace.

    Scheduling lives in the tutoring app; this records how many questions the
    refresh covered.
    """

    payload_model = EmptyPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self, session: AsyncSession, ctx: JobContext, payload: EmptyPayload
    ) -> dict[str, Any]:
        result = await session.execute(
            select(func.count(GeneratedQuestion.id)).where(
                GeneratedQuestion.workspace_id == ctx.tenant_id
            )
        )
        return {"questions": result.scalar() or 0, "refreshed_at": utcnow().isoformat()}


class ReconcileStatsHandler:
    """Recompute per-topic question counts for a workspace."""

    payload_model = EmptyPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self, session: AsyncSession, ctx: JobContext, payload: EmptyPayload
    ) -> dict[str, Any]:
        result = await session.execute(
            select(GeneratedQuestion.topic_id, func.count(GeneratedQuestion.id))
            .where(GeneratedQuestion.workspace_id == ctx.tenant_id)
            .group_by(GeneratedQuestion.topic_id)
        )
        topics = {topic_id or "unassigned": count for topic_id, count in result.all()}
        return {"topics": topics, "total": sum(topics.values())}


class RefreshMaterializedViewsHandler:
    """
    Refresh reporting views on PostgreSQL.

    Only views listed in ``settings.materialized_views`` may be refreshed;
    other databases have no materialized views and the refresh is skipped.
    """

    payload_model = RefreshMaterializedViewsPayload

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: RefreshMaterializedViewsPayload,
    ) -> dict[str, Any]:
        allowed = list(self.settings.materialized_views)
        views = payload.views if payload.views is not None else allowed
        unknown = [v for v in views if v not in allowed]
        if unknown:
            raise PermanentJobError(f"Views not allowed for refresh: {', '.join(unknown)}")

        dialect = session.get_bind().dialect.name
        if dialect != "postgresql":
            return {"refreshed": [], "skipped": views, "reason": f"unsupported on {dialect}"}

        for view in views:
            await session.execute(text(f'REFRESH MATERIALIZED VIEW "{view}"'))
        logger.info(
            "Materialized views refreshed",
            extra={"job_id": str(ctx.job_id), "views": views},
        )
        return {"refreshed": views, "skipped": []}
