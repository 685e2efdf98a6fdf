import json
import uuid
from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from tutor_jobs.config.settings import Settings, get_settings
from tutor_jobs.infra.database import Database, set_database, utcnow
from tutor_jobs.main import create_app, init_registries
from tutor_jobs.v1.core.security import string_to_uuid
from tutor_jobs.v1.infra.jobs.batch import BatchItemResult, BatchPoll, set_batch_client
from tutor_jobs.v1.infra.jobs.models import Job, JobStatus
from tutor_jobs.v1.infra.jobs.worker import JobDispatcher, set_dispatcher

# Import models to ensure they're registered
from tutor_jobs.v1.questions import models as question_models  # noqa: F401

# Tenant and creator the API resolves to in AUTH_MODE=none
TENANT_ID = string_to_uuid("DEV_WORKSPACE")
CREATOR_ID = string_to_uuid("DEV_USER")


class FakeBatchClient:
    """In-memory stand-in for the external batch API."""

    def __init__(self):
        self.submissions: list[dict[str, Any]] = []
        self.states: dict[str, BatchPoll] = {}
        self.poll_errors: dict[str, Exception] = {}
        self.submit_error: Exception | None = None
        self.poll_count = 0

    async def submit(self, requests: list[dict[str, Any]], metadata: dict[str, str]) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        handle = f"batch_{len(self.submissions) + 1}"
        self.submissions.append(
            {"handle": handle, "requests": requests, "metadata": metadata}
        )
        self.states[handle] = BatchPoll.running()
        return handle

    async def poll(self, handle: str) -> BatchPoll:
        self.poll_count += 1
        if handle in self.poll_errors:
            raise self.poll_errors[handle]
        return self.states[handle]

    def complete(self, handle: str, results: dict[str, Any] | None = None) -> None:
        """
        Mark a submitted batch complete.

        ``results`` maps custom_id to completion content (a dict is dumped to
        JSON) or to an Exception standing for a per-item error. Requests
        without an entry get a two-question stub completion.
        """
        submission = next(s for s in self.submissions if s["handle"] == handle)
        results = results or {}
        items = []
        for request in submission["requests"]:
            custom_id = request["custom_id"]
            outcome = results.get(custom_id, completion_content(custom_id))
            if isinstance(outcome, Exception):
                items.append(BatchItemResult(custom_id, error=str(outcome)))
            elif outcome is None:
                continue
            else:
                content = outcome if isinstance(outcome, str) else json.dumps(outcome)
                items.append(BatchItemResult(custom_id, content=content))
        self.states[handle] = BatchPoll.complete(items)

    def fail(self, handle: str, reason: str = "Batch expired") -> None:
        self.states[handle] = BatchPoll.failed(reason)


def completion_content(label: str, count: int = 2) -> dict[str, Any]:
    return {
        "questions": [
            {
                "questionLatex": f"\\({label}\\) question {n}: \\(1 + {n}\\)",
                "answerValue": 1 + n,
                "answerType": "numeric",
                "difficulty": "easy",
                "hints": ["Count up"],
                "tags": ["addition"],
            }
            for n in range(count)
        ]
    }


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        artifact_dir=str(tmp_path / "artifacts"),
        environment="development",
        log_level="WARNING",
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_all()
    set_database(db)
    yield db
    set_database(None)
    await db.close()


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with database.SessionLocal() as session:
        yield session


@pytest.fixture
def batch_client() -> FakeBatchClient:
    client = FakeBatchClient()
    set_batch_client(client)
    yield client
    set_batch_client(None)


@pytest.fixture
def registries(settings: Settings, batch_client: FakeBatchClient) -> None:
    """Register handlers bound to the test settings."""
    init_registries(settings)


@pytest.fixture
def dispatcher(settings: Settings, database: Database, registries) -> JobDispatcher:
    dispatcher = JobDispatcher(settings, database.WorkerSessionLocal)
    set_dispatcher(dispatcher)
    yield dispatcher
    set_dispatcher(None)


@pytest.fixture
def app(settings: Settings, database: Database, dispatcher: JobDispatcher):
    """Create a test FastAPI application with test database."""
    app = create_app(settings)
    app.dependency_overrides[get_settings] = lambda: settings

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_job(database: Database):
    """Insert a job row directly, bypassing payload validation."""

    async def _make_job(job_type: str = "NOOP", **fields: Any) -> Job:
        now = utcnow()
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "tenant_id": TENANT_ID,
            "creator_id": CREATOR_ID,
            "type": job_type,
            "status": JobStatus.PENDING.value,
            "priority": 0,
            "payload": {},
            "attempts": 0,
            "max_attempts": 3,
            "run_after": now,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        job = Job(**values)
        async with database.SessionLocal() as session:
            session.add(job)
            await session.commit()
        return job

    return _make_job


@pytest.fixture
def load_job(database: Database):
    """Read the current state of a job in a fresh session."""

    async def _load_job(job_id: uuid.UUID) -> Job:
        async with database.SessionLocal() as session:
            job = await session.get(Job, job_id)
            assert job is not None
            return job

    return _load_job


@pytest.fixture
def make_eligible(database: Database):
    """Pull a job's run_after into the past, as if its backoff had elapsed."""

    async def _make_eligible(job_id: uuid.UUID) -> None:
        async with database.SessionLocal() as session:
            await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(run_after=utcnow() - timedelta(seconds=1))
            )
            await session.commit()

    return _make_eligible
