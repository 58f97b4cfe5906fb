"""pytest fixtures for Pixorly backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped async session factory on a fresh database
  (SQLite file by default, PostgreSQL testcontainer with TEST_DATABASE=postgres)
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings with the default retry/deadline configuration
- make_user: Helper creating a user with a given balance and quota
"""

import os

# Settings are read when pixorly.app is imported; configure before any test module loads.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CLERK_WEBHOOK_SECRET", "whsec_dGVzdC13ZWJob29rLXNpZ25pbmcta2V5")

import subprocess  # noqa: E402
import sys  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event, text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import pixorly.models  # noqa: E402, F401
from pixorly.core.config import Settings  # noqa: E402
from pixorly.core.database import setup_db_session  # noqa: E402
from pixorly.models.user import PlanTier, User  # noqa: E402
from pixorly.uow import create_uow_factory  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent
USE_POSTGRES = os.environ.get("TEST_DATABASE") == "postgres"

TABLES_IN_DELETE_ORDER = (
    "scheduled_tasks",
    "generated_images",
    "daily_usage",
    "generation_jobs",
    "users",
)


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_pixorly",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


async def _sqlite_session_factory(db_path: Path):
    """File-backed SQLite engine whose transactions take the write lock up front.

    BEGIN IMMEDIATE serialises concurrent units of work the way row locks
    do on PostgreSQL, so concurrency tests behave the same on both.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    return engine, async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session_factory(request, tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Provide a session factory bound to an empty database."""
    if USE_POSTGRES:
        container = request.getfixturevalue("postgres_container")
        factory = setup_db_session(container.get_connection_url(driver="psycopg"), pool_size=5)
        yield factory

        async with factory() as session:
            for table in TABLES_IN_DELETE_ORDER:
                await session.execute(text(f"DELETE FROM {table}"))
            await session.commit()
        await factory.kw["bind"].dispose()
        return

    engine, factory = await _sqlite_session_factory(tmp_path / "pixorly-test.db")
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a plain session for direct repository tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        DATABASE_URL="sqlite+aiosqlite://",
        APP_ENV="test",
        MAX_GENERATION_RETRIES=3,
        RETRY_BASE_DELAY_MS=2000,
        JOB_DEADLINE_SECONDS=600,
        WORKER_BATCH_SIZE=10,
    )


@pytest.fixture
def make_user(uow_factory):
    """Create a user and return it (detached, attributes loaded)."""

    async def _make_user(
        external_id: str = "user_test",
        credits: int = 100,
        storage_quota_bytes: int = 1024 * 1024 * 1024,
        storage_used_bytes: int = 0,
        plan: PlanTier = PlanTier.FREE,
    ) -> User:
        async with await uow_factory() as uow:
            user = User(
                external_id=external_id,
                email=f"{external_id}@example.com",
                plan=plan,
                credits=credits,
                storage_quota_bytes=storage_quota_bytes,
                storage_used_bytes=storage_used_bytes,
            )
            await uow.users.add(user)
        return user

    return _make_user
