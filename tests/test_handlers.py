import uuid

import pytest
from sqlalchemy import func, select

from tutor_jobs.v1.core.exceptions import PermanentJobError
from tutor_jobs.v1.core.registries import JobContext, job_registry
from tutor_jobs.v1.core.security import string_to_uuid
from tutor_jobs.v1.infra.jobs.models import JobType
from tutor_jobs.v1.questions.models import GeneratedQuestion, QuestionOrigin

TENANT_ID = string_to_uuid("DEV_WORKSPACE")
CREATOR_ID = string_to_uuid("DEV_USER")


def make_ctx(job_type: JobType, job_id: uuid.UUID | None = None) -> JobContext:
    return JobContext(
        job_id=job_id or uuid.uuid4(),
        job_type=job_type.value,
        tenant_id=TENANT_ID,
        creator_id=CREATOR_ID,
        attempts=0,
        max_attempts=3,
    )


async def run(session, job_type: JobType, payload: dict, ctx: JobContext | None = None):
    handler = job_registry.get(job_type.value)
    result = await handler.handle(
        session, ctx or make_ctx(job_type), handler.payload_model.model_validate(payload)
    )
    await session.commit()
    return result


async def count_questions(session) -> int:
    result = await session.execute(select(func.count(GeneratedQuestion.id)))
    return result.scalar()


@pytest.fixture
async def bank(db_session):
    """Three questions in the test workspace."""
    questions = [
        GeneratedQuestion(
            workspace_id=TENANT_ID,
            topic_id="addition",
            prompt_text=f"What is {n} + 1?",
            prompt_latex=f"\\({n} + 1\\)",
            answer={"value": n + 1, "latex": f"{n + 1}"},
            answer_type="numeric",
            hints=["Count up by one"],
            solution_steps=[{"step": f"{n} + 1 = {n + 1}"}],
            tags=["addition"],
        )
        for n in range(3)
    ]
    db_session.add_all(questions)
    await db_session.commit()
    return questions


async def test_generate_questions(registries, db_session):
    ctx = make_ctx(JobType.GENERATE_QUESTIONS)

    result = await run(
        db_session,
        JobType.GENERATE_QUESTIONS,
        {"topic_id": "addition", "topic_name": "Addition", "count": 3, "difficulty": "easy"},
        ctx,
    )

    assert result["count"] == 3
    questions = (
        await db_session.execute(
            select(GeneratedQuestion).where(GeneratedQuestion.source_job_id == ctx.job_id)
        )
    ).scalars().all()
    assert {str(q.id) for q in questions} == set(result["question_ids"])
    assert {q.source_key for q in questions} == {"0:0", "0:1", "0:2"}
    assert all(q.difficulty == 2 for q in questions)
    assert all(q.origin == QuestionOrigin.AI_GENERATED for q in questions)
    # Plain-text prompt has the LaTeX delimiters stripped
    assert all("\\(" not in q.prompt_text for q in questions)


async def test_generate_questions_rerun_is_idempotent(registries, db_session):
    ctx = make_ctx(JobType.GENERATE_QUESTIONS)
    payload = {"topic_id": "addition", "topic_name": "Addition", "count": 2}

    first = await run(db_session, JobType.GENERATE_QUESTIONS, payload, ctx)
    second = await run(db_session, JobType.GENERATE_QUESTIONS, payload, ctx)

    assert second["question_ids"] == first["question_ids"]
    assert await count_questions(db_session) == 2


async def test_regen_variant(registries, db_session, bank):
    original = bank[0]
    ctx = make_ctx(JobType.REGEN_VARIANT)

    result = await run(
        db_session, JobType.REGEN_VARIANT, {"question_id": str(original.id)}, ctx
    )
    again = await run(
        db_session, JobType.REGEN_VARIANT, {"question_id": str(original.id)}, ctx
    )

    assert again["variant_id"] == result["variant_id"]
    variant = await db_session.get(GeneratedQuestion, uuid.UUID(result["variant_id"]))
    assert variant.parent_question_id == original.id
    assert variant.origin == QuestionOrigin.AI_VARIANT
    assert variant.topic_id == original.topic_id
    assert variant.source_key == "variant:0"
    assert await count_questions(db_session) == 4


async def test_regen_variant_of_missing_question_is_permanent(registries, db_session):
    with pytest.raises(PermanentJobError, match="not found"):
        await run(db_session, JobType.REGEN_VARIANT, {"question_id": str(uuid.uuid4())})


async def test_generate_pdf_reports_missing_questions(registries, db_session, bank, settings):
    missing = uuid.uuid4()

    result = await run(
        db_session,
        JobType.GENERATE_PDF,
        {
            "title": "Warm-up",
            "question_ids": [str(bank[0].id), str(missing)],
            "include_answers": True,
        },
    )

    assert result["question_count"] == 1
    assert result["missing_question_ids"] == [str(missing)]
    assert result["artifact_path"].startswith(settings.artifact_dir)
    assert len(result["sha256"]) == 64


async def test_generate_pdf_without_questions_is_permanent(registries, db_session):
    with pytest.raises(PermanentJobError, match="No questions found"):
        await run(
            db_session, JobType.GENERATE_PDF, {"question_ids": [str(uuid.uuid4())]}
        )


async def test_generate_embeddings_skips_unchanged(registries, db_session, bank):
    first = await run(db_session, JobType.GENERATE_EMBEDDINGS, {})
    second = await run(db_session, JobType.GENERATE_EMBEDDINGS, {})
    forced = await run(db_session, JobType.GENERATE_EMBEDDINGS, {"force": True})

    assert first["embedded"] == 3 and first["skipped"] == 0
    assert second["embedded"] == 0 and second["skipped"] == 3
    assert forced["embedded"] == 3
    assert first["model_version"] == "stub-v1.0"

    await db_session.refresh(bank[0])
    assert len(bank[0].embedding) == 64


async def test_generate_embeddings_for_selected_questions(registries, db_session, bank):
    result = await run(
        db_session, JobType.GENERATE_EMBEDDINGS, {"question_ids": [str(bank[1].id)]}
    )
    assert result["total"] == 1


async def test_extract_material(registries, db_session):
    result = await run(
        db_session,
        JobType.EXTRACT_MATERIAL,
        {
            "material_id": "mat-1",
            "file_url": "https://files.example.com/uploads/long_division_notes.pdf",
        },
    )

    assert result["material_id"] == "mat-1"
    assert result["analysis"]["topics"] == ["Long Division Notes"]
    assert "application/pdf" in result["analysis"]["summary"]


async def test_reconcile_stats(registries, db_session, bank):
    result = await run(db_session, JobType.RECONCILE_STATS, {})
    assert result == {"topics": {"addition": 3}, "total": 3}


async def test_daily_refresh_counts_workspace_questions(registries, db_session, bank):
    result = await run(db_session, JobType.DAILY_SPACED_REP_REFRESH, {})
    assert result["questions"] == 3


async def test_refresh_views_skipped_outside_postgres(registries, db_session):
    result = await run(db_session, JobType.REFRESH_MATERIALIZED_VIEWS, {})
    assert result["refreshed"] == []
    assert result["reason"] == "unsupported on sqlite"


async def test_refresh_views_rejects_unlisted_view(registries, db_session):
    with pytest.raises(PermanentJobError, match="not allowed"):
        await run(
            db_session, JobType.REFRESH_MATERIALIZED_VIEWS, {"views": ["users; DROP TABLE jobs"]}
        )
