"""Account API endpoints.

- GET /api/users/me - Profile, plan, credits and storage
- GET /api/users/me/usage - Usage statistics and the last 30 days of daily counters
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from pixorly.api.dependencies import get_current_subject, get_uow_factory
from pixorly.api.routes.generations import GenerationJobDTO
from pixorly.services import generation_jobs
from pixorly.services.exceptions import UserNotFoundError

router = APIRouter(prefix="/api/users", tags=["users"])


class UserDTO(BaseModel):
    id: UUID
    external_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    profile_image: Optional[str] = None
    plan: str
    credits: int
    storage_used_bytes: int
    storage_quota_bytes: int
    default_model: Optional[str] = None
    email_notifications: bool


class DailyUsageDTO(BaseModel):
    date: str
    generations_count: int
    generations_success: int
    generations_failed: int
    credits_used: int
    model_usage: dict[str, int]


class UsageStatsResponse(BaseModel):
    """Response model for account usage statistics."""

    credits: int
    plan: str
    storage_used_bytes: int
    storage_quota_bytes: int
    total_generations: int
    total_images: int
    jobs_by_status: dict[str, int]
    recent_jobs: list[GenerationJobDTO]
    daily_usage: list[DailyUsageDTO] = Field(
        ..., description="Per-day counters for the last 30 days, newest first"
    )


@router.get("/me", response_model=UserDTO)
async def get_me(
    subject: str = Depends(get_current_subject),
    uow_factory=Depends(get_uow_factory),
) -> UserDTO:
    try:
        async with await uow_factory() as uow:
            user = await generation_jobs.get_user(uow, subject)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return UserDTO(
        id=user.id,
        external_id=user.external_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        profile_image=user.profile_image,
        plan=user.plan.value,
        credits=user.credits,
        storage_used_bytes=user.storage_used_bytes,
        storage_quota_bytes=user.storage_quota_bytes,
        default_model=user.default_model,
        email_notifications=user.email_notifications,
    )


@router.get("/me/usage", response_model=UsageStatsResponse)
async def get_my_usage(
    subject: str = Depends(get_current_subject),
    uow_factory=Depends(get_uow_factory),
) -> UsageStatsResponse:
    try:
        async with await uow_factory() as uow:
            stats = await generation_jobs.get_user_usage_stats(uow, subject)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return UsageStatsResponse(
        credits=stats.credits,
        plan=stats.plan,
        storage_used_bytes=stats.storage_used_bytes,
        storage_quota_bytes=stats.storage_quota_bytes,
        total_generations=stats.total_generations,
        total_images=stats.total_images,
        jobs_by_status=stats.jobs_by_status,
        recent_jobs=[GenerationJobDTO.from_job(job) for job in stats.recent_jobs],
        daily_usage=[
            DailyUsageDTO.model_validate(row, from_attributes=True) for row in stats.daily_usage
        ],
    )
