"""Generation job API endpoints.

This module implements REST endpoints for generation jobs:
- POST /api/generations - Validate, reserve credits and enqueue a job
- GET /api/generations/{job_id} - Job status for the owner
- GET /api/generations - Caller's jobs, newest first

Only persisted status and error text are ever returned; provider exceptions
never reach the caller.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from pixorly.api.dependencies import (
    get_current_subject,
    get_gateway,
    get_scheduler,
    get_uow_factory,
)
from pixorly.models.generation_job import GenerationJob, JobStatus
from pixorly.services import generation_jobs
from pixorly.services.exceptions import (
    GenerationValidationError,
    InsufficientCreditsError,
    JobNotFoundError,
    UserNotFoundError,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/generations", tags=["generations"])


# Request/Response Models


class CreateGenerationRequest(BaseModel):
    """Request model for creating a generation job."""

    prompt: str = Field(..., description="Text prompt (1-2000 characters after trimming)")
    model: str = Field(..., description="Model key (e.g. flux-klein) or provider model id")
    negative_prompt: Optional[str] = Field(default=None, description="What to avoid")
    width: Optional[int] = Field(default=None, description="Width in pixels (256-2048)")
    height: Optional[int] = Field(default=None, description="Height in pixels (256-2048)")
    steps: Optional[int] = Field(default=None, description="Inference steps (model default)")
    guidance: Optional[float] = Field(default=None, description="Guidance scale (model default)")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible output")
    num_images: Optional[int] = Field(default=None, description="Images to generate (1-4)")


class CreateGenerationResponse(BaseModel):
    """Response model for an admitted generation job."""

    job_id: UUID = Field(..., description="Identifier to poll for status")
    credits_used: int = Field(..., description="Credits reserved for this job")
    credits_remaining: int = Field(..., description="Balance after the reservation")


class GenerationJobDTO(BaseModel):
    """Data Transfer Object for generation job status."""

    id: UUID
    status: JobStatus
    prompt: str
    negative_prompt: Optional[str] = None
    model: str
    width: int
    height: int
    num_images: int
    credits_used: int
    retry_count: int
    error: Optional[str] = Field(default=None, description="Failure reason (failed jobs only)")
    refunded: bool
    image_ids: list[UUID] = Field(default_factory=list)
    processing_time_ms: Optional[int] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime

    @classmethod
    def from_job(cls, job: GenerationJob) -> "GenerationJobDTO":
        return cls(
            id=job.id,
            status=job.status,
            prompt=job.prompt,
            negative_prompt=job.negative_prompt,
            model=job.model,
            width=job.width,
            height=job.height,
            num_images=job.num_images,
            credits_used=job.credits_used,
            retry_count=job.retry_count,
            error=job.error if job.status == JobStatus.FAILED else None,
            refunded=job.refunded,
            image_ids=[UUID(str(image_id)) for image_id in job.image_ids or []],
            processing_time_ms=job.processing_time_ms,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            updated_at=job.updated_at,
        )


class GenerationListResponse(BaseModel):
    generations: list[GenerationJobDTO]


# API Endpoints


@router.post(
    "", response_model=CreateGenerationResponse, status_code=status.HTTP_201_CREATED
)
async def create_generation(
    request: CreateGenerationRequest,
    subject: str = Depends(get_current_subject),
    uow_factory=Depends(get_uow_factory),
    gateway=Depends(get_gateway),
    scheduler=Depends(get_scheduler),
) -> CreateGenerationResponse:
    """Admit a generation request.

    Validates the request, reserves credits and schedules the job in one
    transaction. Returns immediately; poll GET /api/generations/{job_id}.

    Raises:
        HTTPException 400: Validation error
        HTTPException 402: Insufficient credits
        HTTPException 404: Caller has no account
    """
    try:
        async with await uow_factory() as uow:
            created = await generation_jobs.create_generation_job(
                uow,
                gateway,
                scheduler,
                subject,
                **request.model_dump(),
            )
    except GenerationValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return CreateGenerationResponse(
        job_id=created.job_id,
        credits_used=created.credits_used,
        credits_remaining=created.credits_remaining,
    )


@router.get("/{job_id}", response_model=GenerationJobDTO)
async def get_generation(
    job_id: UUID,
    subject: str = Depends(get_current_subject),
    uow_factory=Depends(get_uow_factory),
) -> GenerationJobDTO:
    """Return a job owned by the caller (404 otherwise, never 403)."""
    try:
        async with await uow_factory() as uow:
            job = await generation_jobs.get_generation_job(uow, subject, job_id)
    except (JobNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return GenerationJobDTO.from_job(job)


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    status_filter: Optional[JobStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
    subject: str = Depends(get_current_subject),
    uow_factory=Depends(get_uow_factory),
) -> GenerationListResponse:
    """List the caller's jobs, newest first, optionally filtered by status."""
    try:
        async with await uow_factory() as uow:
            jobs = await generation_jobs.list_generation_jobs(
                uow, subject, status=status_filter, limit=limit
            )
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return GenerationListResponse(generations=[GenerationJobDTO.from_job(job) for job in jobs])
