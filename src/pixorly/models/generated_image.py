"""GeneratedImage entity - one stored artifact of a generation job."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel

from pixorly.core.clock import utcnow


class GeneratedImage(SQLModel, table=True):
    """A successfully uploaded image.

    Generation parameters are copied from the job for provenance. Only the
    counters and the visibility/moderation flags change after creation.
    """

    __tablename__ = "generated_images"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    generation_job_id: UUID = Field(foreign_key="generation_jobs.id", index=True)

    prompt: str
    negative_prompt: Optional[str] = Field(default=None)
    model: str = Field(max_length=255)
    width: int
    height: int
    steps: int
    guidance: float
    seed: Optional[int] = Field(default=None, sa_type=BigInteger)

    storage_key: str = Field(max_length=1024)
    storage_bucket: str = Field(max_length=255)
    url: str
    file_size_bytes: int = Field(ge=0, sa_type=BigInteger)
    mime_type: str = Field(max_length=100)

    is_public: bool = Field(default=False, index=True)
    views: int = Field(default=0, ge=0)
    downloads: int = Field(default=0, ge=0)
    is_flagged: bool = Field(default=False)
    flag_reason: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
