"""GenerationJob entity - one image generation request with lifecycle tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Column, Index
from sqlmodel import Field, SQLModel

from pixorly.core.clock import utcnow


class JobStatus(str, Enum):
    """Generation job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """A user's request to produce one or more images under fixed parameters.

    `credits_used` is the amount reserved at creation and never recomputed.
    `attempts_started` counts provider attempts that have been claimed by a
    worker; it is the fencing token that makes duplicate wake-ups no-ops.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]
    __table_args__ = (Index("ix_generation_jobs_user_id_status", "user_id", "status"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)

    # Generation parameters
    prompt: str = Field(max_length=2000)
    negative_prompt: Optional[str] = Field(default=None, max_length=2000)
    model: str = Field(max_length=255)
    width: int = Field(default=1024)
    height: int = Field(default=1024)
    steps: int = Field(default=30)
    guidance: float = Field(default=7.5)
    seed: Optional[int] = Field(default=None, sa_type=BigInteger)
    num_images: int = Field(default=1, ge=1, le=4)

    # Billing and retry bookkeeping
    credits_used: int = Field(ge=0)
    retry_count: int = Field(default=0, ge=0)
    attempts_started: int = Field(default=0, ge=0)
    refunded: bool = Field(default=False)
    error: Optional[str] = Field(default=None)

    # Results
    image_ids: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    processing_time_ms: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_uploading(self) -> None:
        """Transition from processing to uploading.

        Raises:
            InvalidStateTransition: If current status is not processing
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark uploading from {self.status.value}. "
                "Job must be in processing state."
            )
        self.status = JobStatus.UPLOADING
        self.updated_at = utcnow()

    def mark_completed(self, image_ids: list[UUID]) -> None:
        """Transition from uploading to completed.

        Args:
            image_ids: Identifiers of the images stored for this job

        Raises:
            InvalidStateTransition: If current status is not uploading
            ValueError: If image_ids is empty
        """
        if self.status != JobStatus.UPLOADING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be in uploading state."
            )
        if not image_ids:
            raise ValueError("A completed job needs at least one image")

        now = utcnow()
        self.image_ids = [str(image_id) for image_id in image_ids]
        self.status = JobStatus.COMPLETED
        self.completed_at = now
        self.updated_at = now
        if self.started_at is not None:
            self.processing_time_ms = int((now - self.started_at).total_seconds() * 1000)

    def mark_failed(self, error: str, refunded: bool) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error: Human readable failure reason shown to the owner
            refunded: Whether the reserved credits were returned

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        now = utcnow()
        self.error = error
        self.refunded = refunded
        self.status = JobStatus.FAILED
        self.completed_at = now
        self.updated_at = now

    def schedule_retry(self, error: str) -> int:
        """Record a retryable failure and bump the retry counter.

        Status is left unchanged; the job stays in processing.

        Returns:
            Retry count before the increment (the backoff exponent)
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot schedule retry from {self.status.value}. Job must be in processing state."
            )
        previous = self.retry_count
        self.retry_count = previous + 1
        self.error = error
        self.updated_at = utcnow()
        return previous
