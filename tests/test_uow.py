"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from pixorly.core.clock import utcnow
from pixorly.models.generation_job import GenerationJob
from pixorly.models.user import User
from pixorly.services.scheduler import PROCESS_GENERATION, DatabaseTaskScheduler


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    async with await uow_factory() as uow:
        user = User(external_id="user_commit", email="commit@example.com", credits=10)
        await uow.users.add(user)
        user_id = user.id

    async with await uow_factory() as uow:
        found = await uow.users.get_by_id(user_id)
        assert found is not None
        assert found.external_id == "user_commit"
        assert found.credits == 10


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Exceptions roll back the transaction and propagate to the caller."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.users.add(User(external_id="user_rollback", credits=10))
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.users.get_any_by_external_id("user_rollback") is None


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    async with await uow_factory() as uow:
        assert uow.users is not None
        assert uow.jobs is not None
        assert uow.images is not None
        assert uow.usage is not None
        assert uow.tasks is not None


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory, make_user):
    """A job, its debit and its first wake-up commit or roll back together."""
    user = await make_user(credits=100)
    scheduler = DatabaseTaskScheduler()

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            await uow.users.debit_credits(user.id, 40)
            job = GenerationJob(
                user_id=user.id, prompt="sunset", model="flux-klein", credits_used=40
            )
            await uow.jobs.add(job)
            await scheduler.run_after(uow, 0, PROCESS_GENERATION, job.id, {"attempt": 0})
            rolled_back_job_id = job.id
            raise RuntimeError("crash before commit")

    async with await uow_factory() as uow:
        assert await uow.users.get_credits(user.id) == 100
        assert await uow.jobs.get_by_id(rolled_back_job_id) is None
        assert await uow.tasks.list_for_job(rolled_back_job_id) == []


@pytest.mark.asyncio
async def test_naive_utc_timestamps_round_trip(uow_factory):
    """Timestamps are stored and reloaded as naive UTC datetimes."""
    before = utcnow()
    async with await uow_factory() as uow:
        user = User(external_id="user_clock", email="clock@example.com", credits=1)
        await uow.users.add(user)
        user_id = user.id

    async with await uow_factory() as uow:
        found = await uow.users.get_by_id(user_id)

    assert found.created_at.tzinfo is None
    assert found.updated_at.tzinfo is None
    assert before <= found.created_at <= utcnow()
