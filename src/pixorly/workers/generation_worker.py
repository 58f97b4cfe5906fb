"""Generation worker: runs due scheduled tasks and advances generation jobs.

Polls `scheduled_tasks` for due rows, claims them with FOR UPDATE SKIP LOCKED
and executes each concurrently. A `process_generation` task drives one job
through one attempt of the state machine:

    pending -> processing -> uploading -> completed
                    |             |
                    +-------------+----> failed

Every step opens a short unit of work and re-reads the persisted job before
acting. Provider calls and uploads happen outside any transaction.

Duplicate wake-ups are fenced by `GenerationJob.attempts_started`: each task
carries the attempt number it was scheduled for, and only the first claim of
that attempt proceeds.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

import structlog

from pixorly.core.clock import utcnow
from pixorly.core.config import Settings
from pixorly.models.generated_image import GeneratedImage
from pixorly.models.generation_job import GenerationJob, JobStatus
from pixorly.services.exceptions import (
    JobNotActiveError,
    QuotaExceededError,
    ServiceError,
    UserNotFoundError,
)
from pixorly.services.generation_jobs import complete_job, fail_job
from pixorly.services.image_generation.byte_sources import ByteSource
from pixorly.services.image_generation.request_validator import GenerationRequest
from pixorly.services.retry_policy import decide
from pixorly.services.scheduler import PROCESS_GENERATION, TaskScheduler
from pixorly.services.storage.quota import ensure_quota

logger = structlog.get_logger(__name__)


@dataclass
class WorkerContext:
    """Collaborators shared by every task the worker runs.

    Attributes:
        uow_factory: Creates UnitOfWork instances (`async with await uow_factory()`)
        gateway: Provider gateway with async `generate(GenerationRequest)` and `resolve(ByteSource)`
        store: Artifact store with async `put(data, content_type, owner)` and `delete(key)`
        scheduler: Task scheduler used for retry wake-ups
        settings: Retry, deadline and polling configuration
    """

    uow_factory: Callable
    gateway: Any
    store: Any
    scheduler: TaskScheduler
    settings: Settings


def _request_from_job(job: GenerationJob) -> GenerationRequest:
    return GenerationRequest(
        prompt=job.prompt,
        model=job.model,
        negative_prompt=job.negative_prompt,
        width=job.width,
        height=job.height,
        steps=job.steps,
        guidance=job.guidance,
        seed=job.seed,
        num_images=job.num_images,
    )


def _past_deadline(job: GenerationJob, settings: Settings) -> bool:
    return utcnow() - job.created_at > timedelta(seconds=settings.job_deadline_seconds)


async def process_generation_job(job_id: UUID, attempt: int, ctx: WorkerContext) -> None:
    """Run one attempt of a generation job.

    Workflow:
    1. Load job; skip if missing or terminal (idempotent)
    2. Fail with refund if the job is past its deadline
    3. Claim attempt `attempt` (pending, or processing for retries); stale wake-ups skip
    4. Call the provider gateway (outside any transaction)
    5. Download, upload and record each image, then complete the job
    6. On failure, apply the retry/refund policy

    Args:
        job_id: Job to advance
        attempt: Retry count the wake-up was scheduled for (0 for the first attempt)
        ctx: Worker collaborators

    Raises:
        Exception: Unexpected (unclassified) errors, after the job has been failed
    """
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if job is None:
            logger.warning("generation.job_missing", job_id=str(job_id))
            return

        if job.is_terminal:
            logger.info(
                "generation.skipped", job_id=str(job_id), status=job.status.value, attempt=attempt
            )
            return

        if _past_deadline(job, ctx.settings):
            await fail_job(uow, job, "Generation timed out", refund=True)
            return

        claimed = await uow.jobs.claim_attempt(job_id, attempt)
        if not claimed:
            logger.info(
                "generation.duplicate_wakeup",
                job_id=str(job_id),
                status=job.status.value,
                attempt=attempt,
                retry_count=job.retry_count,
            )
            return

        await uow.jobs.refresh(job)
        user = await uow.users.get_by_id(job.user_id)
        owner = user.external_id if user else str(job.user_id)
        user_id = job.user_id
        request = _request_from_job(job)

    logger.info(
        "generation.started",
        job_id=str(job_id),
        model=request.model,
        num_images=request.num_images,
        attempt=attempt,
    )

    try:
        sources = await ctx.gateway.generate(request)
        await _store_and_complete(job_id, user_id, owner, sources, ctx)

    except ServiceError as e:
        await _handle_failure(job_id, e, ctx)

    except Exception as e:
        # Unexpected error - fail the job so it never hangs, then re-raise for the task log
        logger.error(
            "generation.unexpected_error",
            job_id=str(job_id),
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        await _handle_failure(job_id, e, ctx)
        raise


async def _store_and_complete(
    job_id: UUID, user_id: UUID, owner: str, sources: list[ByteSource], ctx: WorkerContext
) -> None:
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            logger.warning(
                "generation.upload_skipped",
                job_id=str(job_id),
                status=job.status.value if job else None,
            )
            return
        job.mark_uploading()
        uow.session.add(job)

    image_ids: list[UUID] = []
    for index, source in enumerate(sources):
        try:
            image_ids.append(await _store_image(job_id, user_id, owner, source, ctx))
        except JobNotActiveError as e:
            logger.warning(
                "generation.upload_abandoned",
                job_id=str(job_id),
                status=str(e.status),
                stored=len(image_ids),
            )
            return
        except ServiceError as e:
            if index == 0:
                # Nothing to show the user
                raise
            logger.warning(
                "generation.image_skipped",
                job_id=str(job_id),
                image_index=index,
                error=str(e),
            )

    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_for_update(job_id)
        if job is None:
            raise RuntimeError(f"Job {job_id} disappeared during upload")
        if job.status != JobStatus.UPLOADING:
            logger.warning(
                "generation.completion_skipped", job_id=str(job_id), status=job.status.value
            )
            return
        await complete_job(uow, job, image_ids)

    logger.info(
        "generation.completed",
        job_id=str(job_id),
        image_count=len(image_ids),
        requested=len(sources),
        processing_time_ms=job.processing_time_ms,
    )


async def _store_image(
    job_id: UUID, user_id: UUID, owner: str, source: ByteSource, ctx: WorkerContext
) -> UUID:
    """Fetch, quota-check, upload and record one image.

    The record is written only while the job is still uploading; otherwise
    the uploaded object is removed again.

    Returns:
        ID of the created GeneratedImage

    Raises:
        ImageDownloadError: Provider-hosted image could not be fetched
        QuotaExceededError: Upload would exceed the quota (nothing written)
        StorageUploadError: Object storage failed
        JobNotActiveError: Job was finalised elsewhere (nothing written)
    """
    image = await ctx.gateway.resolve(source)

    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if job is None or job.status != JobStatus.UPLOADING:
            raise JobNotActiveError(job_id, job.status.value if job else None)
        user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        ensure_quota(user.storage_used_bytes, user.storage_quota_bytes, image.size_bytes)

    stored = await ctx.store.put(image.data, image.content_type, owner)

    try:
        async with await ctx.uow_factory() as uow:
            job = await uow.jobs.get_for_update(job_id)
            if job is None or job.status != JobStatus.UPLOADING:
                raise JobNotActiveError(job_id, job.status.value if job else None)

            if not await uow.users.increment_storage(user_id, stored.size_bytes):
                user = await uow.users.get_by_id(user_id)
                raise QuotaExceededError(
                    used=user.storage_used_bytes if user else 0,
                    quota=user.storage_quota_bytes if user else 0,
                    incoming=stored.size_bytes,
                )

            record = GeneratedImage(
                user_id=user_id,
                generation_job_id=job_id,
                prompt=job.prompt,
                negative_prompt=job.negative_prompt,
                model=job.model,
                width=job.width,
                height=job.height,
                steps=job.steps,
                guidance=job.guidance,
                seed=job.seed,
                storage_key=stored.key,
                storage_bucket=stored.bucket,
                url=stored.url,
                file_size_bytes=stored.size_bytes,
                mime_type=stored.content_type,
            )
            await uow.images.add(record)
    except Exception:
        await ctx.store.delete(stored.key)
        raise

    return record.id


async def _handle_failure(job_id: UUID, error: BaseException, ctx: WorkerContext) -> None:
    """Reschedule the job or fail it, per the retry policy."""
    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if job is None or job.is_terminal:
            return

        decision = decide(
            error,
            job.retry_count,
            max_retries=ctx.settings.max_generation_retries,
            base_delay_ms=ctx.settings.retry_base_delay_ms,
        )

        if decision.retry and job.status == JobStatus.PROCESSING:
            job.schedule_retry(str(error))
            uow.session.add(job)
            await ctx.scheduler.run_after(
                uow,
                decision.delay_ms or 0,
                PROCESS_GENERATION,
                job.id,
                {"attempt": job.retry_count},
            )
            logger.warning(
                "generation.retry_scheduled",
                job_id=str(job_id),
                retry_count=job.retry_count,
                delay_ms=decision.delay_ms,
                error=str(error),
            )
            return

        await fail_job(uow, job, str(error) or type(error).__name__, refund=decision.refund)


async def run_task(
    task_id: UUID, task_name: str, job_id: UUID, payload: dict, ctx: WorkerContext
) -> None:
    """Execute one claimed task and record its outcome."""
    try:
        if task_name == PROCESS_GENERATION:
            await process_generation_job(job_id, int(payload.get("attempt", 0)), ctx)
        else:
            raise ValueError(f"Unknown task: {task_name}")

    except asyncio.CancelledError:
        raise

    except Exception as e:
        async with await ctx.uow_factory() as uow:
            await uow.tasks.mark_failed(task_id, f"{type(e).__name__}: {e}")
        raise

    async with await ctx.uow_factory() as uow:
        await uow.tasks.mark_done(task_id)


async def process_batch(ctx: WorkerContext, now: Optional[datetime] = None) -> int:
    """Claim due tasks and run them concurrently.

    Workflow:
    1. Claim up to WORKER_BATCH_SIZE due tasks (FOR UPDATE SKIP LOCKED), mark running
    2. Commit the claim so other workers skip these rows
    3. Run tasks concurrently, each with its own units of work
    4. Log failures

    Args:
        ctx: Worker collaborators
        now: Reference time for due-ness (defaults to the current time)

    Returns:
        Number of tasks claimed
    """
    async with await ctx.uow_factory() as uow:
        tasks = await uow.tasks.claim_due(now or utcnow(), limit=ctx.settings.worker_batch_size)
        claimed = [(task.id, task.task_name, task.job_id, dict(task.payload)) for task in tasks]

    if not claimed:
        return 0

    results = await asyncio.gather(
        *(run_task(task_id, name, job_id, payload, ctx) for task_id, name, job_id, payload in claimed),
        return_exceptions=True,
    )

    for (task_id, name, job_id, _), result in zip(claimed, results):
        if isinstance(result, Exception):
            logger.error(
                "task.failed",
                task_id=str(task_id),
                task_name=name,
                job_id=str(job_id),
                error=str(result),
                error_type=type(result).__name__,
            )

    return len(claimed)


async def recover_orphaned_tasks(ctx: WorkerContext) -> None:
    """Reset tasks stuck in 'running' on startup.

    Worker crashes or restarts leave tasks in 'running' status. Re-running
    them is safe because a stale attempt cannot be claimed twice.
    """
    async with await ctx.uow_factory() as uow:
        recovered_count = await uow.tasks.reset_running()

    if recovered_count > 0:
        logger.info("worker.recovery", orphaned_tasks_reset=recovered_count)


async def run_generation_worker(ctx: WorkerContext) -> None:
    """Main worker loop.

    Polls at POLL_INTERVAL_SECONDS, processes batches, and handles graceful shutdown.

    Args:
        ctx: Worker collaborators
    """
    await recover_orphaned_tasks(ctx)

    logger.info(
        "worker.started",
        poll_interval=ctx.settings.poll_interval_seconds,
        batch_size=ctx.settings.worker_batch_size,
    )

    try:
        while True:
            try:
                processed = await process_batch(ctx)

                # Drain a full batch immediately, otherwise wait for the next poll
                if processed < ctx.settings.worker_batch_size:
                    await asyncio.sleep(ctx.settings.poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped")
        raise
