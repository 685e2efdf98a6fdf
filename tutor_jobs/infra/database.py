from datetime import UTC, datetime
from typing import Any, AsyncGenerator

from sqlalchemy import DateTime, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from tutor_jobs.config.settings import Settings, settings as default_settings


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    PostgreSQL stores ``timestamptz`` natively; SQLite drops the offset, so
    values are normalized to UTC on the way in and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


WORKER_EXECUTION_OPTIONS = {"sqlite_begin": "IMMEDIATE"}


def _configure_sqlite(engine: AsyncEngine) -> None:
    """WAL, busy timeout, and explicit BEGIN so SAVEPOINTs nest properly.

    Connections carrying ``sqlite_begin="IMMEDIATE"`` take the write lock when
    the transaction opens. A deferred transaction that read a stale snapshot
    cannot be upgraded to a writer, and ``busy_timeout`` does not cover that
    case.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=20000")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn: Any) -> None:
        mode = conn.get_execution_options().get("sqlite_begin")
        conn.exec_driver_sql(f"BEGIN {mode}" if mode == "IMMEDIATE" else "BEGIN")


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases."""
    if settings.database_url.startswith("sqlite"):
        engine = create_async_engine(
            settings.database_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 20},
        )
        _configure_sqlite(engine)
        return engine
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        echo=settings.debug and settings.log_level == "DEBUG",
    )


class Database:
    """Database connection and session management."""

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        self.settings = settings
        self.engine = engine or build_engine(settings)
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        # Sessions for the dispatcher: claim, handler work and lease release
        self.WorkerSessionLocal = async_sessionmaker(
            bind=self.engine.execution_options(**WORKER_EXECUTION_OPTIONS),
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create tables directly (local development and tests)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()


# Global database instance
_database: Database | None = None


def get_database() -> Database:
    """Get or create the global database instance."""
    global _database
    if _database is None:
        _database = Database(default_settings)
    return _database


def set_database(database: Database | None) -> None:
    """Swap the global database (application startup and tests)."""
    global _database
    _database = database


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency injection for database sessions."""
    async with get_database().SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
