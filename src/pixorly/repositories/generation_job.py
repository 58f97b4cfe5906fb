"""GenerationJob repository for Pixorly backend.

Provides data access for generation jobs, including the conditional claim
that fences duplicate worker wake-ups.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pixorly.core.clock import utcnow
from pixorly.models.generation_job import TERMINAL_STATUSES, GenerationJob, JobStatus


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID, locking its row until the transaction ends.

        Serialises the worker's per-image commits against the expiry sweep.
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_for_user(self, job_id: UUID, user_id: UUID) -> GenerationJob | None:
        """Retrieve job only if it belongs to the given user."""
        result = await self.session.execute(
            select(GenerationJob).where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.user_id == user_id,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self, user_id: UUID, status: JobStatus | None = None, limit: int = 50
    ) -> list[GenerationJob]:
        """List a user's jobs, newest first.

        Args:
            user_id: Owner of the jobs
            status: Optional status filter (uses the user+status index)
            limit: Maximum number of jobs to return

        Returns:
            Jobs ordered by created_at DESC
        """
        query = select(GenerationJob).where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
        if status is not None:
            query = query.where(GenerationJob.status == status)  # type: ignore[arg-type]
        query = query.order_by(GenerationJob.created_at.desc()).limit(limit)  # type: ignore[attr-defined]

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self, user_id: UUID) -> dict[str, int]:
        """Count a user's jobs grouped by status."""
        result = await self.session.execute(
            select(GenerationJob.status, func.count())
            .where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
            .group_by(GenerationJob.status)
        )
        return {JobStatus(status).value: count for status, count in result.all()}

    async def claim_attempt(self, job_id: UUID, attempt: int) -> bool:
        """Claim provider attempt number `attempt` for a job.

        The first attempt is accepted only from pending; retry attempts only
        from processing. `attempts_started` must still equal `attempt`, so a
        second wake-up carrying the same attempt number updates zero rows.

        Query:
            UPDATE generation_jobs
            SET attempts_started = :attempt + 1, status = 'processing',
                started_at = COALESCE(started_at, now)
            WHERE id = :job_id AND attempts_started = :attempt
              AND retry_count = :attempt AND status = :expected_status

        Args:
            job_id: Job to claim
            attempt: Retry count carried by the wake-up

        Returns:
            True if this caller now owns the attempt, False for a stale wake-up
        """
        now = utcnow()
        expected_status = JobStatus.PENDING if attempt == 0 else JobStatus.PROCESSING
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.attempts_started == attempt,  # type: ignore[arg-type]
                GenerationJob.retry_count == attempt,  # type: ignore[arg-type]
                GenerationJob.status == expected_status,  # type: ignore[arg-type]
            )
            .values(
                attempts_started=attempt + 1,
                status=JobStatus.PROCESSING,
                started_at=func.coalesce(GenerationJob.started_at, now),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def refresh(self, job: GenerationJob) -> GenerationJob:
        """Reload a job's columns after a bulk UPDATE touched its row."""
        await self.session.refresh(job)
        return job

    async def get_expired(self, created_before: datetime, limit: int = 100) -> list[GenerationJob]:
        """Retrieve non-terminal jobs created before a cutoff, oldest first.

        Uses FOR UPDATE SKIP LOCKED so a sweep never blocks on a job a worker
        is currently finalising.
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(
                GenerationJob.created_at < created_before,  # type: ignore[arg-type]
                GenerationJob.status.notin_(TERMINAL_STATUSES),  # type: ignore[attr-defined]
            )
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())
