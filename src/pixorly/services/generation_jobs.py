"""Generation job admission, queries and terminal failure handling.

Admission is synchronous: validate, price, reserve credits, persist the job
and schedule its first wake-up in one transaction. Everything after that
runs in the generation worker.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog

from pixorly.core.clock import utc_today, utcnow
from pixorly.models.daily_usage import DailyUsage
from pixorly.models.generated_image import GeneratedImage
from pixorly.models.generation_job import GenerationJob, JobStatus
from pixorly.models.user import User
from pixorly.services.billing import credit_ledger
from pixorly.services.exceptions import (
    ImageNotFoundError,
    JobNotFoundError,
    UserNotFoundError,
)
from pixorly.services.image_generation.gateway import ProviderGateway
from pixorly.services.scheduler import PROCESS_GENERATION, TaskScheduler
from pixorly.services.usage_aggregator import UsageOutcome, record_event
from pixorly.uow import UnitOfWork

logger = structlog.get_logger(__name__)

MAX_LIST_LIMIT = 100
USAGE_HISTORY_DAYS = 30


@dataclass(frozen=True)
class JobCreated:
    job_id: UUID
    credits_used: int
    credits_remaining: int


@dataclass
class UsageStats:
    """Account overview returned by the usage endpoint."""

    credits: int
    plan: str
    storage_used_bytes: int
    storage_quota_bytes: int
    total_generations: int
    total_images: int
    jobs_by_status: dict[str, int]
    recent_jobs: list[GenerationJob] = field(default_factory=list)
    daily_usage: list[DailyUsage] = field(default_factory=list)


async def get_user(uow: UnitOfWork, external_id: str) -> User:
    """Resolve the caller's identity subject to a user row.

    Raises:
        UserNotFoundError: No active user for the subject
    """
    user = await uow.users.get_by_external_id(external_id)
    if user is None:
        raise UserNotFoundError("User not found")
    return user


async def create_generation_job(
    uow: UnitOfWork,
    gateway: ProviderGateway,
    scheduler: TaskScheduler,
    external_id: str,
    prompt: str,
    model: str,
    negative_prompt: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    steps: Optional[int] = None,
    guidance: Optional[float] = None,
    seed: Optional[int] = None,
    num_images: Optional[int] = None,
) -> JobCreated:
    """Admit a generation request.

    The caller's unit of work must commit for the job to exist; on any
    exception it rolls back, so a rejected request leaves no job and no
    debit behind.

    Args:
        uow: Active unit of work
        gateway: Provider gateway (validation and pricing)
        scheduler: Task scheduler for the first wake-up
        external_id: Caller's identity subject
        prompt..num_images: Raw request fields, defaults applied by validation

    Returns:
        JobCreated with the job id, credits charged and remaining balance

    Raises:
        GenerationValidationError: Invalid request
        InsufficientCreditsError: Balance lower than the cost
        UserNotFoundError: Unknown subject
    """
    user = await get_user(uow, external_id)

    request = gateway.validate(
        prompt=prompt,
        model=model,
        negative_prompt=negative_prompt,
        width=width,
        height=height,
        steps=steps,
        guidance=guidance,
        seed=seed,
        num_images=num_images,
    )
    per_image = gateway.estimate_cost(request.model, request.width, request.height)
    credits_used = per_image * request.num_images

    remaining = await credit_ledger.reserve(uow, user.id, credits_used)

    job = GenerationJob(
        user_id=user.id,
        status=JobStatus.PENDING,
        prompt=request.prompt,
        negative_prompt=request.negative_prompt,
        model=request.model,
        width=request.width,
        height=request.height,
        steps=request.steps,
        guidance=request.guidance,
        seed=request.seed,
        num_images=request.num_images,
        credits_used=credits_used,
    )
    await uow.jobs.add(job)
    await scheduler.run_after(uow, 0, PROCESS_GENERATION, job.id, {"attempt": 0})

    logger.info(
        "generation.job.created",
        job_id=str(job.id),
        user_id=str(user.id),
        model=request.model,
        num_images=request.num_images,
        credits_used=credits_used,
        credits_remaining=remaining,
    )
    return JobCreated(job_id=job.id, credits_used=credits_used, credits_remaining=remaining)


async def complete_job(uow: UnitOfWork, job: GenerationJob, image_ids: list[UUID]) -> None:
    """Move an uploading job to completed and record a successful generation."""
    job.mark_completed(image_ids)
    uow.session.add(job)
    await record_event(
        uow, job.user_id, UsageOutcome.SUCCESS, credits_charged=job.credits_used, model=job.model
    )


async def fail_job(uow: UnitOfWork, job: GenerationJob, error: str, refund: bool) -> None:
    """Move a job to failed, refunding at most once and recording usage.

    Args:
        uow: Active unit of work holding `job`
        job: Non-terminal job
        error: Failure text shown to the owner
        refund: Whether to return the reserved credits
    """
    refund = refund and not job.refunded
    job.mark_failed(error, refunded=refund)
    uow.session.add(job)

    if refund:
        await credit_ledger.refund(uow, job.user_id, job.credits_used)

    await record_event(
        uow,
        job.user_id,
        UsageOutcome.FAILURE,
        credits_charged=0 if refund else job.credits_used,
        model=job.model,
    )

    logger.warning(
        "generation.job.failed",
        job_id=str(job.id),
        error=error,
        refunded=refund,
        retry_count=job.retry_count,
    )


async def expire_stale_jobs(
    uow: UnitOfWork, deadline_seconds: int, now: Optional[datetime] = None, limit: int = 100
) -> int:
    """Finalise non-terminal jobs older than the deadline.

    An uploading job that already owns stored images is completed with them;
    every other job fails with a refund.

    Returns:
        Number of jobs finalised
    """
    cutoff = (now or utcnow()) - timedelta(seconds=deadline_seconds)
    jobs = await uow.jobs.get_expired(cutoff, limit=limit)
    for job in jobs:
        images = []
        if job.status == JobStatus.UPLOADING:
            images = await uow.images.list_for_job(job.id)

        if images:
            await complete_job(uow, job, [image.id for image in images])
            logger.warning(
                "generation.job.expired_with_images", job_id=str(job.id), image_count=len(images)
            )
        else:
            await fail_job(uow, job, "Generation timed out", refund=True)
    return len(jobs)


async def get_generation_job(uow: UnitOfWork, external_id: str, job_id: UUID) -> GenerationJob:
    """Return a job owned by the caller.

    Raises:
        JobNotFoundError: Missing, or owned by another user
    """
    user = await get_user(uow, external_id)
    job = await uow.jobs.get_for_user(job_id, user.id)
    if job is None:
        raise JobNotFoundError("Generation not found")
    return job


async def list_generation_jobs(
    uow: UnitOfWork,
    external_id: str,
    status: Optional[JobStatus] = None,
    limit: int = 50,
) -> list[GenerationJob]:
    user = await get_user(uow, external_id)
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    return await uow.jobs.list_for_user(user.id, status=status, limit=limit)


async def get_generated_image(
    uow: UnitOfWork, external_id: Optional[str], image_id: UUID
) -> GeneratedImage:
    """Return an image owned by the caller or marked public.

    Raises:
        ImageNotFoundError: Missing, or private to another user
    """
    user_id = None
    if external_id is not None:
        user = await uow.users.get_by_external_id(external_id)
        user_id = user.id if user else None

    image = await uow.images.get_visible_to(image_id, user_id)
    if image is None:
        raise ImageNotFoundError("Image not found")
    return image


async def get_user_usage_stats(uow: UnitOfWork, external_id: str) -> UsageStats:
    user = await get_user(uow, external_id)

    jobs_by_status = await uow.jobs.count_by_status(user.id)
    since = (utc_today() - timedelta(days=USAGE_HISTORY_DAYS)).isoformat()

    return UsageStats(
        credits=user.credits,
        plan=user.plan.value,
        storage_used_bytes=user.storage_used_bytes,
        storage_quota_bytes=user.storage_quota_bytes,
        total_generations=sum(jobs_by_status.values()),
        total_images=await uow.images.count_for_user(user.id),
        jobs_by_status=jobs_by_status,
        recent_jobs=await uow.jobs.list_for_user(user.id, limit=5),
        daily_usage=await uow.usage.list_since(user.id, since),
    )
