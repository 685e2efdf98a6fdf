from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import select, update

from tutor_jobs.infra.database import utcnow
from tutor_jobs.v1.core.exceptions import PermanentJobError, TransientJobError
from tutor_jobs.v1.core.registries import JobRegistry
from tutor_jobs.v1.core.security import string_to_uuid
from tutor_jobs.v1.infra.jobs.models import Job, JobStatus, JobType
from tutor_jobs.v1.infra.jobs.payloads import EmptyPayload, JobPayload
from tutor_jobs.v1.infra.jobs.service import JobService
from tutor_jobs.v1.infra.jobs.worker import JobDispatcher, backoff_delay
from tutor_jobs.v1.questions.models import GeneratedQuestion

TENANT_ID = string_to_uuid("DEV_WORKSPACE")
CREATOR_ID = string_to_uuid("DEV_USER")


class ScriptedHandler:
    """Handler whose outcomes are scripted per call; records the jobs it ran."""

    payload_model = EmptyPayload

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def handle(self, session, ctx, payload):
        self.calls.append(ctx.job_id)
        outcome = self.outcomes.pop(0) if self.outcomes else {"ok": True}
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StrictPayload(JobPayload):
    count: int


class StrictHandler:
    payload_model = StrictPayload

    def __init__(self):
        self.calls = 0

    async def handle(self, session, ctx, payload):
        self.calls += 1
        return {"count": payload.count}


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def scripted_dispatcher(settings, database, registry):
    return JobDispatcher(settings, database.WorkerSessionLocal, registry=registry)


async def test_generate_pdf_job_runs_to_completion(
    settings, database, dispatcher, db_session, load_job
):
    """Enqueue a GENERATE_PDF job and process it in one dispatch pass."""
    questions = [
        GeneratedQuestion(
            workspace_id=TENANT_ID,
            topic_id="addition",
            prompt_text=f"What is {n} + {n}?",
            answer={"value": 2 * n},
            hints=[],
            solution_steps=[],
            tags=[],
        )
        for n in range(1, 4)
    ]
    db_session.add_all(questions)
    await db_session.commit()

    job = await JobService(settings).enqueue(
        db_session,
        TENANT_ID,
        CREATOR_ID,
        JobType.GENERATE_PDF.value,
        {"title": "Addition drill", "question_ids": [str(q.id) for q in questions]},
        priority=2,
    )

    processed = await dispatcher.process_jobs(1)

    assert processed == 1
    stored = await load_job(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.locked_by is None
    assert stored.locked_at is None
    assert stored.attempts == 0
    assert stored.result["question_count"] == 3
    artifact = Path(stored.result["artifact_path"])
    assert artifact.exists()
    assert artifact.read_bytes().startswith(b"%PDF")
    assert stored.result["bytes"] == artifact.stat().st_size


async def test_transient_failure_is_retried_with_backoff(
    settings, registry, scripted_dispatcher, make_job, load_job, make_eligible
):
    handler = ScriptedHandler(TransientJobError("rate limited"), {"ok": True})
    registry.register("FLAKY", handler)
    job = await make_job("FLAKY")

    before = utcnow()
    assert await scripted_dispatcher.process_jobs(1) == 1

    stored = await load_job(job.id)
    assert stored.status == JobStatus.PENDING.value
    assert stored.attempts == 1
    assert stored.error == "rate limited"
    assert stored.locked_by is None and stored.locked_at is None
    delay = backoff_delay(1, settings.job_backoff_base_s, settings.job_max_backoff_s)
    assert stored.run_after >= before + delay

    # Not eligible until the backoff elapses
    assert await scripted_dispatcher.process_jobs(1) == 0
    assert len(handler.calls) == 1

    await make_eligible(job.id)
    assert await scripted_dispatcher.process_jobs(1) == 1

    stored = await load_job(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.attempts == 1
    assert stored.result == {"ok": True}
    assert stored.error is None


async def test_exhausted_retries_fail_the_job(
    registry, scripted_dispatcher, make_job, load_job, make_eligible
):
    handler = ScriptedHandler(*(RuntimeError(f"boom {n}") for n in range(1, 4)))
    registry.register("FLAKY", handler)
    job = await make_job("FLAKY", max_attempts=3)

    for attempt in range(1, 4):
        assert await scripted_dispatcher.process_jobs(1) == 1
        stored = await load_job(job.id)
        assert stored.attempts == attempt
        assert stored.attempts <= stored.max_attempts
        await make_eligible(job.id)

    assert stored.status == JobStatus.FAILED.value
    assert stored.error == "boom 3"

    assert await scripted_dispatcher.process_jobs(1) == 0
    assert len(handler.calls) == 3


async def test_permanent_failure_skips_retries(
    registry, scripted_dispatcher, make_job, load_job
):
    registry.register("BROKEN", ScriptedHandler(PermanentJobError("bad input")))
    job = await make_job("BROKEN", max_attempts=5)

    await scripted_dispatcher.process_jobs(1)

    stored = await load_job(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.attempts == 1
    assert stored.error == "bad input"


async def test_payload_invalid_at_execution_fails_immediately(
    registry, scripted_dispatcher, make_job, load_job
):
    handler = StrictHandler()
    registry.register("STRICT", handler)
    job = await make_job("STRICT", payload={"count": "many"})

    await scripted_dispatcher.process_jobs(1)

    stored = await load_job(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error.startswith("Invalid payload")
    assert handler.calls == 0


async def test_unregistered_type_fails_immediately(scripted_dispatcher, make_job, load_job):
    job = await make_job("RETIRED_TYPE")

    await scripted_dispatcher.process_jobs(1)

    stored = await load_job(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert "No handler registered" in stored.error


async def test_priority_then_fifo_order(registry, scripted_dispatcher, make_job):
    handler = ScriptedHandler()
    registry.register("ORDERED", handler)
    now = utcnow()
    old_low = await make_job("ORDERED", priority=1, created_at=now - timedelta(minutes=5))
    new_high = await make_job("ORDERED", priority=5, created_at=now)
    old_mid = await make_job("ORDERED", priority=3, created_at=now - timedelta(minutes=2))
    new_mid = await make_job("ORDERED", priority=3, created_at=now - timedelta(minutes=1))

    # One job per pass shows the claim order
    for _ in range(4):
        await scripted_dispatcher.process_jobs(1)

    assert handler.calls == [new_high.id, old_mid.id, new_mid.id, old_low.id]


async def test_claimed_batch_runs_in_priority_order(registry, scripted_dispatcher, make_job):
    handler = ScriptedHandler()
    registry.register("ORDERED", handler)
    low = await make_job("ORDERED", priority=1)
    high = await make_job("ORDERED", priority=9)

    assert await scripted_dispatcher.process_jobs(10) == 2
    assert handler.calls == [high.id, low.id]


async def test_job_not_claimed_before_run_after(
    registry, scripted_dispatcher, make_job, load_job
):
    handler = ScriptedHandler()
    registry.register("LATER", handler)
    job = await make_job("LATER", run_after=utcnow() + timedelta(hours=1))

    assert await scripted_dispatcher.process_jobs(10) == 0
    assert handler.calls == []
    assert (await load_job(job.id)).status == JobStatus.PENDING.value


async def test_batch_pending_jobs_are_never_claimed(
    registry, scripted_dispatcher, make_job, load_job
):
    registry.register("PARKED", ScriptedHandler())
    job = await make_job(
        "PARKED",
        status=JobStatus.BATCH_PENDING.value,
        external_batch_id="batch_1",
        run_after=utcnow() - timedelta(days=1),
        priority=100,
    )

    assert await scripted_dispatcher.process_jobs(10) == 0
    assert (await load_job(job.id)).status == JobStatus.BATCH_PENDING.value


async def test_job_ids_restrict_the_claim(registry, scripted_dispatcher, make_job):
    handler = ScriptedHandler()
    registry.register("ANY", handler)
    await make_job("ANY", priority=10)
    target = await make_job("ANY", priority=0)

    assert await scripted_dispatcher.process_jobs(1, job_ids=[target.id]) == 1
    assert handler.calls == [target.id]


async def test_limit_bounds_work_per_pass(registry, scripted_dispatcher, make_job):
    handler = ScriptedHandler()
    registry.register("ANY", handler)
    for _ in range(5):
        await make_job("ANY")

    assert await scripted_dispatcher.process_jobs(2) == 2
    assert await scripted_dispatcher.process_jobs(10) == 3
    assert await scripted_dispatcher.process_jobs(10) == 0


async def test_stale_lease_is_swept_back_to_pending(
    settings, registry, scripted_dispatcher, make_job, load_job
):
    stale_at = utcnow() - timedelta(seconds=settings.job_lease_timeout_s + 60)
    job = await make_job(
        "CRASHED",
        status=JobStatus.PROCESSING.value,
        locked_by="dead-worker",
        locked_at=stale_at,
    )

    assert await scripted_dispatcher.sweep() == 1

    stored = await load_job(job.id)
    assert stored.status == JobStatus.PENDING.value
    assert stored.attempts == 1
    assert stored.locked_by is None
    assert stored.locked_at is None
    assert "Lease expired" in stored.error


async def test_stale_lease_on_last_attempt_fails(
    settings, scripted_dispatcher, make_job, load_job
):
    stale_at = utcnow() - timedelta(seconds=settings.job_lease_timeout_s + 60)
    job = await make_job(
        "CRASHED",
        status=JobStatus.PROCESSING.value,
        locked_by="dead-worker",
        locked_at=stale_at,
        attempts=2,
        max_attempts=3,
    )

    await scripted_dispatcher.sweep()

    stored = await load_job(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.attempts == 3


async def test_fresh_lease_is_not_swept(scripted_dispatcher, make_job, load_job):
    job = await make_job(
        "BUSY",
        status=JobStatus.PROCESSING.value,
        locked_by="live-worker",
        locked_at=utcnow(),
    )

    assert await scripted_dispatcher.sweep() == 0
    assert (await load_job(job.id)).locked_by == "live-worker"


async def test_swept_job_is_rerun_in_same_pass(
    settings, registry, scripted_dispatcher, make_job, load_job
):
    handler = ScriptedHandler()
    registry.register("CRASHED", handler)
    job = await make_job(
        "CRASHED",
        status=JobStatus.PROCESSING.value,
        locked_by="dead-worker",
        locked_at=utcnow() - timedelta(seconds=settings.job_lease_timeout_s + 1),
    )

    assert await scripted_dispatcher.process_jobs(1) == 1
    stored = await load_job(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.attempts == 1


class LeaseStealingHandler:
    """Simulates the sweep handing the job to another worker mid-execution."""

    payload_model = EmptyPayload

    def __init__(self, database):
        self.database = database

    async def handle(self, session, ctx, payload):
        session.add(
            GeneratedQuestion(
                workspace_id=ctx.tenant_id,
                prompt_text="written by a worker that lost its lease",
                answer={},
                hints=[],
                solution_steps=[],
                tags=[],
                source_job_id=ctx.job_id,
                source_key="0:0",
            )
        )
        async with self.database.SessionLocal() as other:
            await other.execute(
                update(Job)
                .where(Job.id == ctx.job_id)
                .values(locked_by="other-worker", locked_at=utcnow())
            )
            await other.commit()
        return {"ok": True}


async def test_lost_lease_discards_results(
    database, registry, scripted_dispatcher, make_job, load_job
):
    registry.register("SLOW", LeaseStealingHandler(database))
    job = await make_job("SLOW")

    assert await scripted_dispatcher.process_jobs(1) == 0

    stored = await load_job(job.id)
    assert stored.status == JobStatus.PROCESSING.value
    assert stored.locked_by == "other-worker"
    assert stored.result is None
    async with database.SessionLocal() as session:
        written = await session.execute(
            select(GeneratedQuestion).where(GeneratedQuestion.source_job_id == job.id)
        )
        assert written.scalars().all() == []
