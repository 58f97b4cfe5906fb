"""Generation worker tests: state machine, retries, refunds and uploads.

Jobs are admitted through the service layer and advanced by running the
worker's batch loop against an in-memory provider and artifact store.
"""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from fakes import (
    FakeArtifactStore,
    RecordingScheduler,
    ScriptedProvider,
    data_url,
    error_response,
    images_payload,
    make_gateway,
    ok_response,
    png_bytes,
)

from pixorly.core.clock import utcnow
from pixorly.models.generation_job import JobStatus
from pixorly.models.scheduled_task import ScheduledTask, TaskStatus
from pixorly.services import generation_jobs
from pixorly.workers.generation_worker import (
    WorkerContext,
    process_batch,
    process_generation_job,
    recover_orphaned_tasks,
)


def make_ctx(
    uow_factory, settings, provider=None, store=None, scheduler=None, download_handler=None
) -> WorkerContext:
    return WorkerContext(
        uow_factory=uow_factory,
        gateway=make_gateway(
            provider or ScriptedProvider(ok_response()), download_handler=download_handler
        ),
        store=store or FakeArtifactStore(),
        scheduler=scheduler or RecordingScheduler(),
        settings=settings,
    )


async def create_job(ctx: WorkerContext, external_id="user_test", **fields):
    fields.setdefault("prompt", "sunset")
    fields.setdefault("model", "flux-klein")
    async with await ctx.uow_factory() as uow:
        return await generation_jobs.create_generation_job(
            uow, ctx.gateway, ctx.scheduler, external_id, **fields
        )


async def run_due(ctx: WorkerContext) -> int:
    """Run every task due now, treating backoff delays as already elapsed."""
    return await process_batch(ctx, now=utcnow() + timedelta(days=1))


async def drain(ctx: WorkerContext, max_rounds: int = 20) -> None:
    for _ in range(max_rounds):
        if await run_due(ctx) == 0:
            return
    raise AssertionError("worker did not settle")


async def load(ctx: WorkerContext, job_id, user_id):
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        images = await uow.images.list_for_job(job_id)
        user = await uow.users.get_by_id(user_id)
    return job, images, user


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_two_image_job_completes(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)
        provider = ScriptedProvider(ok_response(count=2, size=2048))
        store = FakeArtifactStore()
        ctx = make_ctx(uow_factory, settings, provider, store)

        created = await create_job(ctx, width=1024, height=1024, num_images=2)
        assert created.credits_used == 80
        assert created.credits_remaining == 20

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert job.credits_used == 80
        assert job.error is None
        assert len(images) == 2
        assert sorted(job.image_ids) == sorted(str(image.id) for image in images)
        assert job.completed_at is not None and job.started_at is not None
        assert owner.credits == 20
        assert owner.storage_used_bytes == 2 * 2048
        assert provider.call_count == 1
        assert all(image.storage_key.startswith("images/user_test/") for image in images)
        assert {image.storage_key for image in images} == set(store.objects)

        async with await uow_factory() as uow:
            [usage] = await uow.usage.list_since(user.id, "2000-01-01")
        assert usage.generations_success == 1
        assert usage.credits_used == 80
        assert usage.model_usage == {"flux-klein": 1}

    @pytest.mark.asyncio
    async def test_service_unavailable_exhausts_retries_and_refunds(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        provider = ScriptedProvider(error_response(503))
        scheduler = RecordingScheduler()
        ctx = make_ctx(uow_factory, settings, provider, scheduler=scheduler)

        created = await create_job(ctx, num_images=2)
        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert "temporarily unavailable" in job.error
        assert job.refunded is True
        assert job.retry_count == 3
        assert images == []
        assert owner.credits == 100
        assert provider.call_count == 4
        assert scheduler.delays == [0, 2000, 4000, 8000]

        async with await uow_factory() as uow:
            [usage] = await uow.usage.list_since(user.id, "2000-01-01")
        assert usage.generations_failed == 1
        assert usage.credits_used == 0


class TestRetries:
    @pytest.mark.asyncio
    async def test_backoff_schedule_keeps_job_processing(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)
        provider = ScriptedProvider(error_response(429, "Rate limited"))
        scheduler = RecordingScheduler()
        ctx = make_ctx(uow_factory, settings, provider, scheduler=scheduler)
        created = await create_job(ctx)

        for expected_retries, expected_delay in ((1, 2000), (2, 4000), (3, 8000)):
            assert await run_due(ctx) == 1
            job, _, _ = await load(ctx, created.job_id, user.id)
            assert job.status == JobStatus.PROCESSING
            assert job.retry_count == expected_retries
            assert "Rate limit exceeded" in job.error
            assert scheduler.scheduled[-1][2:] == (expected_delay, {"attempt": expected_retries})

        # Fourth retryable failure fails instead of scheduling again
        assert await run_due(ctx) == 1
        job, _, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert len(scheduler.scheduled) == 4
        assert owner.credits == 100
        assert await run_due(ctx) == 0

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)
        provider = ScriptedProvider(error_response(502, "Bad gateway"), ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert job.retry_count == 1
        assert len(images) == 1
        assert owner.credits == 60
        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)

        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = ScriptedProvider(timeout, ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        await drain(ctx)

        job, _, _ = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert job.retry_count == 1

    @pytest.mark.asyncio
    async def test_permanent_provider_error_fails_without_refund(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        provider = ScriptedProvider(error_response(401, "No auth credentials found"))
        scheduler = RecordingScheduler()
        ctx = make_ctx(uow_factory, settings, provider, scheduler=scheduler)
        created = await create_job(ctx)

        await drain(ctx)

        job, _, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert "Invalid API key" in job.error
        assert job.refunded is False
        assert owner.credits == 60
        assert provider.call_count == 1
        assert scheduler.delays == [0]

    @pytest.mark.asyncio
    async def test_empty_provider_response_fails_without_refund(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        provider = ScriptedProvider(httpx.Response(200, json={"choices": [{"message": {}}]}))
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        await drain(ctx)

        job, _, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert job.error == "No images produced"
        assert job.refunded is False
        assert owner.credits == 60


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_second_advance_is_noop(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)
        provider = ScriptedProvider(ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        await process_generation_job(created.job_id, 0, ctx)
        await process_generation_job(created.job_id, 0, ctx)

        job, images, _ = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert len(images) == 1
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_wakeups_call_provider_once(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        provider = ScriptedProvider(ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        await asyncio.gather(
            process_generation_job(created.job_id, 0, ctx),
            process_generation_job(created.job_id, 0, ctx),
        )

        job, images, _ = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert len(images) == 1
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_wakeup_for_claimed_attempt_is_skipped(self, uow_factory, settings, make_user):
        await make_user(credits=100)
        provider = ScriptedProvider(ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        async with await uow_factory() as uow:
            assert await uow.jobs.claim_attempt(created.job_id, 0) is True
        async with await uow_factory() as uow:
            assert await uow.jobs.claim_attempt(created.job_id, 0) is False

        await process_generation_job(created.job_id, 0, ctx)

        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_stale_retry_wakeup_is_skipped(self, uow_factory, settings, make_user):
        """A leftover attempt-0 wake-up after a retry was scheduled does nothing."""
        user = await make_user(credits=100)
        provider = ScriptedProvider(error_response(503), ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        await run_due(ctx)
        await process_generation_job(created.job_id, 0, ctx)

        job, _, _ = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.PROCESSING
        assert job.retry_count == 1
        assert provider.call_count == 1


class TestUploads:
    @pytest.mark.asyncio
    async def test_first_image_upload_failure_fails_job_with_refund(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=200)
        store = FakeArtifactStore(fail_on_calls={0})
        ctx = make_ctx(uow_factory, settings, ScriptedProvider(ok_response(count=3)), store)
        created = await create_job(ctx, num_images=3)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert "Failed to upload" in job.error
        assert job.refunded is True
        assert images == []
        assert owner.credits == 200
        assert owner.storage_used_bytes == 0

    @pytest.mark.asyncio
    async def test_later_image_upload_failure_is_tolerated(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)
        store = FakeArtifactStore(fail_on_calls={1})
        ctx = make_ctx(uow_factory, settings, ScriptedProvider(ok_response(count=2)), store)
        created = await create_job(ctx, num_images=2)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert len(images) == 1
        assert job.image_ids == [str(images[0].id)]
        assert job.refunded is False
        assert owner.credits == 20

    @pytest.mark.asyncio
    async def test_quota_exceeded_leaves_no_artifact(self, uow_factory, settings, make_user):
        user = await make_user(
            credits=100, storage_quota_bytes=1_000_000, storage_used_bytes=500_000
        )
        store = FakeArtifactStore()
        ctx = make_ctx(uow_factory, settings, ScriptedProvider(ok_response(size=600_000)), store)
        created = await create_job(ctx)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert "Storage quota exceeded" in job.error
        assert job.refunded is True
        assert images == []
        assert owner.storage_used_bytes == 500_000
        assert owner.credits == 100
        assert store.calls == 0

    @pytest.mark.asyncio
    async def test_quota_reached_mid_job_keeps_earlier_images(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(
            credits=100, storage_quota_bytes=1_000_000, storage_used_bytes=500_000
        )
        store = FakeArtifactStore()
        ctx = make_ctx(
            uow_factory, settings, ScriptedProvider(ok_response(count=2, size=400_000)), store
        )
        created = await create_job(ctx, num_images=2)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert len(images) == 1
        assert owner.storage_used_bytes == 900_000
        assert len(store.objects) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("download_status", [404, 503])
    async def test_later_image_download_failure_is_tolerated(
        self, uow_factory, settings, make_user, download_status
    ):
        user = await make_user(credits=100)
        payload = images_payload(data_url(png_bytes(1024)), "https://cdn.provider.test/img2.png")
        provider = ScriptedProvider(httpx.Response(200, json=payload))
        store = FakeArtifactStore()
        ctx = make_ctx(
            uow_factory,
            settings,
            provider,
            store,
            download_handler=lambda request: httpx.Response(download_status),
        )
        created = await create_job(ctx, num_images=2)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.COMPLETED
        assert len(images) == 1
        assert job.image_ids == [str(images[0].id)]
        assert job.refunded is False
        assert owner.credits == 20
        assert owner.storage_used_bytes == 1024
        assert provider.call_count == 1
        assert store.calls == 1

    @pytest.mark.asyncio
    async def test_first_image_download_failure_fails_job_with_refund(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        provider = ScriptedProvider(
            httpx.Response(200, json=images_payload("https://cdn.provider.test/img1.png"))
        )
        store = FakeArtifactStore()
        ctx = make_ctx(
            uow_factory,
            settings,
            provider,
            store,
            download_handler=lambda request: httpx.Response(404),
        )
        created = await create_job(ctx)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Image download failed (404)"
        assert job.refunded is True
        assert images == []
        assert owner.credits == 100
        assert provider.call_count == 1
        assert store.calls == 0


class ExpiringStore(FakeArtifactStore):
    """Artifact store that runs the expiry sweep just before upload number `expire_on_call`."""

    def __init__(self, uow_factory, expire_on_call: int):
        super().__init__()
        self.uow_factory = uow_factory
        self.expire_on_call = expire_on_call
        self.expired = 0

    async def put(self, data, content_type, owner):
        if self.calls == self.expire_on_call:
            async with await self.uow_factory() as uow:
                self.expired += await generation_jobs.expire_stale_jobs(
                    uow, deadline_seconds=600, now=utcnow() + timedelta(hours=1)
                )
        return await super().put(data, content_type, owner)


class TestExpiryDuringUpload:
    @pytest.mark.asyncio
    async def test_job_expired_before_first_image_keeps_no_artifact(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        store = ExpiringStore(uow_factory, expire_on_call=0)
        ctx = make_ctx(uow_factory, settings, ScriptedProvider(ok_response(count=2)), store)
        created = await create_job(ctx, num_images=2)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert store.expired == 1
        assert job.status == JobStatus.FAILED
        assert job.error == "Generation timed out"
        assert job.refunded is True
        assert images == []
        assert owner.credits == 100
        assert owner.storage_used_bytes == 0
        assert store.objects == {}
        assert len(store.deleted) == 1
        assert store.calls == 1

        async with await uow_factory() as uow:
            [usage] = await uow.usage.list_since(user.id, "2000-01-01")
        assert usage.generations_failed == 1
        assert usage.generations_success == 0

    @pytest.mark.asyncio
    async def test_job_expired_after_first_image_completes_with_it(
        self, uow_factory, settings, make_user
    ):
        user = await make_user(credits=100)
        store = ExpiringStore(uow_factory, expire_on_call=1)
        ctx = make_ctx(uow_factory, settings, ScriptedProvider(ok_response(count=2)), store)
        created = await create_job(ctx, num_images=2)

        await drain(ctx)

        job, images, owner = await load(ctx, created.job_id, user.id)
        assert store.expired == 1
        assert job.status == JobStatus.COMPLETED
        assert job.refunded is False
        assert len(images) == 1
        assert job.image_ids == [str(images[0].id)]
        assert owner.credits == 20
        assert owner.storage_used_bytes == 1024
        assert set(store.objects) == {images[0].storage_key}
        assert len(store.deleted) == 1

        async with await uow_factory() as uow:
            [usage] = await uow.usage.list_since(user.id, "2000-01-01")
        assert usage.generations_success == 1
        assert usage.generations_count == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_job_past_deadline_fails_with_refund(self, uow_factory, settings, make_user):
        user = await make_user(credits=100)
        provider = ScriptedProvider(ok_response())
        ctx = make_ctx(uow_factory, settings, provider)
        created = await create_job(ctx)

        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(created.job_id)
            job.created_at = utcnow() - timedelta(seconds=settings.job_deadline_seconds + 1)
            uow.session.add(job)

        await drain(ctx)

        job, _, owner = await load(ctx, created.job_id, user.id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Generation timed out"
        assert owner.credits == 100
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_credit_conservation(self, uow_factory, settings, make_user):
        """Final balance = initial - credits of completed and unrefunded failed jobs."""
        user = await make_user(credits=300)

        def route(request: httpx.Request) -> httpx.Response:
            prompt = json.loads(request.content)["messages"][0]["content"]
            if prompt.startswith("keep"):
                return ok_response()
            if prompt.startswith("retry"):
                return error_response(503)
            return error_response(400, "Unsupported parameters")

        ctx = make_ctx(uow_factory, settings, ScriptedProvider(route))
        completed = await create_job(ctx, prompt="keep this one")
        refunded = await create_job(ctx, prompt="retry until exhausted", model="flux-pro")
        charged = await create_job(ctx, prompt="rejected request", model="flux-flex")

        await drain(ctx)

        statuses = {}
        for created in (completed, refunded, charged):
            job, _, _ = await load(ctx, created.job_id, user.id)
            statuses[created.job_id] = (job.status, job.refunded)
        _, _, owner = await load(ctx, completed.job_id, user.id)

        assert statuses == {
            completed.job_id: (JobStatus.COMPLETED, False),
            refunded.job_id: (JobStatus.FAILED, True),
            charged.job_id: (JobStatus.FAILED, False),
        }
        assert owner.credits == 300 - completed.credits_used - charged.credits_used

    @pytest.mark.asyncio
    async def test_orphaned_running_tasks_are_requeued(self, uow_factory, settings, make_user):
        await make_user(credits=100)
        ctx = make_ctx(uow_factory, settings)
        created = await create_job(ctx)

        async with await uow_factory() as uow:
            [task] = await uow.tasks.claim_due(utcnow() + timedelta(seconds=1))
            task_id = task.id

        await recover_orphaned_tasks(ctx)

        async with await uow_factory() as uow:
            task = await uow.tasks.get_by_id(task_id)
        assert task.status == TaskStatus.SCHEDULED
        assert task.attempts == 1

        await drain(ctx)
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(created.job_id)
            task = await uow.tasks.get_by_id(task_id)
        assert job.status == JobStatus.COMPLETED
        assert task.status == TaskStatus.DONE

    @pytest.mark.asyncio
    async def test_unknown_task_is_marked_failed(self, uow_factory, settings, make_user):
        await make_user(credits=100)
        ctx = make_ctx(uow_factory, settings)
        created = await create_job(ctx)

        async with await uow_factory() as uow:
            await uow.tasks.add(
                ScheduledTask(task_name="send_newsletter", job_id=created.job_id, run_at=utcnow())
            )

        await drain(ctx)

        async with await uow_factory() as uow:
            tasks = await uow.tasks.list_for_job(created.job_id)
        failed = [task for task in tasks if task.task_name == "send_newsletter"]
        assert failed[0].status == TaskStatus.FAILED
        assert "Unknown task" in failed[0].last_error
