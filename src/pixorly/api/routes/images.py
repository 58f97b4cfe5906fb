"""Generated image API endpoints.

- GET /api/images/{image_id} - Metadata and URL, for the owner or when public
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from pixorly.api.dependencies import get_current_subject, get_uow_factory
from pixorly.services import generation_jobs
from pixorly.services.exceptions import ImageNotFoundError

router = APIRouter(prefix="/api/images", tags=["images"])


class GeneratedImageDTO(BaseModel):
    """Data Transfer Object for image metadata."""

    id: UUID
    generation_job_id: UUID
    url: str
    prompt: str
    negative_prompt: Optional[str] = None
    model: str
    width: int
    height: int
    seed: Optional[int] = None
    file_size_bytes: int
    mime_type: str
    is_public: bool
    views: int
    downloads: int
    created_at: datetime


@router.get("/{image_id}", response_model=GeneratedImageDTO)
async def get_image(
    image_id: UUID,
    subject: str = Depends(get_current_subject),
    uow_factory=Depends(get_uow_factory),
) -> GeneratedImageDTO:
    """Return image metadata if the caller owns it or it is public.

    Raises:
        HTTPException 404: Missing, or private to another user
    """
    try:
        async with await uow_factory() as uow:
            image = await generation_jobs.get_generated_image(uow, subject, image_id)
    except ImageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return GeneratedImageDTO.model_validate(image, from_attributes=True)
