"""
Question materialization shared by the question-producing job handlers.

Rows carry ``(source_job_id, source_key)``; keys that already exist are
reused instead of inserted, so handlers can run again after a crash or a
lost lease without duplicating questions.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.v1.questions.models import GeneratedQuestion, QuestionOrigin
from tutor_jobs.v1.questions.schemas import QuestionDraft


async def existing_source_keys(
    session: AsyncSession, source_job_id: UUID, prefix: str | None = None
) -> dict[str, UUID]:
    """Map of source_key -> question id already created by a job."""
    query = select(GeneratedQuestion.source_key, GeneratedQuestion.id).where(
        GeneratedQuestion.source_job_id == source_job_id
    )
    if prefix is not None:
        query = query.where(GeneratedQuestion.source_key.startswith(prefix))
    result = await session.execute(query)
    return {key: question_id for key, question_id in result.all()}


def parse_drafts(raw_questions: list[dict[str, Any]]) -> list[QuestionDraft]:
    """Validate generator output; raises pydantic.ValidationError on bad drafts."""
    return [QuestionDraft.model_validate(raw) for raw in raw_questions]


async def materialize_drafts(
    session: AsyncSession,
    *,
    workspace_id: UUID,
    topic_id: str | None,
    drafts: list[QuestionDraft],
    source_job_id: UUID,
    key_prefix: str,
    created_by: UUID | None = None,
    origin: str = QuestionOrigin.AI_GENERATED,
    parent_question_id: UUID | None = None,
) -> list[str]:
    """
    Insert drafts as questions keyed ``"{key_prefix}:{n}"``.

    Returns ids of all questions for the given keys, new and pre-existing.
    """
    existing = await existing_source_keys(session, source_job_id, f"{key_prefix}:")
    ids: list[str] = []
    for n, draft in enumerate(drafts):
        key = f"{key_prefix}:{n}"
        if key in existing:
            ids.append(str(existing[key]))
            continue
        question = GeneratedQuestion(
            workspace_id=workspace_id,
            topic_id=topic_id,
            origin=origin,
            prompt_text=draft.prompt_text,
            prompt_latex=draft.question_latex,
            answer=draft.answer_json(),
            answer_type=draft.answer_type,
            difficulty=draft.difficulty,
            hints=draft.hints,
            solution_steps=draft.solution_steps,
            tags=draft.tags,
            parent_question_id=parent_question_id,
            source_job_id=source_job_id,
            source_key=key,
            created_by=created_by,
        )
        session.add(question)
        await session.flush()
        ids.append(str(question.id))
    return ids


async def load_questions(
    session: AsyncSession, workspace_id: UUID, question_ids: list[UUID] | None = None
) -> list[GeneratedQuestion]:
    """Questions of a workspace, in the order of ``question_ids`` when given."""
    query = select(GeneratedQuestion).where(GeneratedQuestion.workspace_id == workspace_id)
    if question_ids is not None:
        query = query.where(GeneratedQuestion.id.in_(question_ids))
    else:
        query = query.order_by(GeneratedQuestion.created_at.asc())
    result = await session.execute(query)
    questions = list(result.scalars().all())
    if question_ids is not None:
        position = {qid: i for i, qid in enumerate(question_ids)}
        questions.sort(key=lambda q: position.get(q.id, len(position)))
    return questions


async def topic_prompts(
    session: AsyncSession, workspace_id: UUID, topic_id: str, limit: int = 20
) -> list[str]:
    """Recent prompts of a topic, handed to generators to avoid repeats."""
    result = await session.execute(
        select(GeneratedQuestion.prompt_text)
        .where(
            and_(
                GeneratedQuestion.workspace_id == workspace_id,
                GeneratedQuestion.topic_id == topic_id,
            )
        )
        .order_by(GeneratedQuestion.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
