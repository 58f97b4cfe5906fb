"""ScheduledTask repository for Pixorly backend.

Provides data access for durable delayed tasks with worker coordination via
FOR UPDATE SKIP LOCKED.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pixorly.core.clock import utcnow
from pixorly.models.scheduled_task import ScheduledTask, TaskStatus


class ScheduledTaskRepository:
    """Repository for ScheduledTask entities.

    Methods include worker coordination queries using FOR UPDATE SKIP LOCKED
    to ensure non-overlapping task distribution across concurrent workers.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, task: ScheduledTask) -> ScheduledTask:
        """Persist new task.

        Args:
            task: ScheduledTask entity to persist

        Returns:
            Persisted task with generated ID
        """
        self.session.add(task)
        await self.session.flush()
        return task

    async def get_by_id(self, task_id: UUID) -> ScheduledTask | None:
        result = await self.session.execute(
            select(ScheduledTask).where(ScheduledTask.id == task_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_for_job(self, job_id: UUID) -> list[ScheduledTask]:
        """List every task ever scheduled for a job, oldest first."""
        result = await self.session.execute(
            select(ScheduledTask)
            .where(ScheduledTask.job_id == job_id)  # type: ignore[arg-type]
            .order_by(ScheduledTask.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def claim_due(self, now: datetime, limit: int = 10) -> list[ScheduledTask]:
        """Lock due tasks and mark them running.

        Query explanation:
        - WHERE status = 'scheduled' AND run_at <= now: Only due tasks
        - ORDER BY run_at ASC: Oldest deadline first
        - LIMIT: Batch size for worker
        - FOR UPDATE SKIP LOCKED: Lock rows, skip already locked ones

        Args:
            now: Reference time for due-ness
            limit: Maximum number of tasks to claim (default: 10)

        Returns:
            Tasks now in running status, owned by this worker
        """
        # FOR UPDATE SKIP LOCKED ensures worker coordination
        result = await self.session.execute(
            select(ScheduledTask)
            .where(
                ScheduledTask.status == TaskStatus.SCHEDULED,  # type: ignore[arg-type]
                ScheduledTask.run_at <= now,  # type: ignore[arg-type]
            )
            .order_by(ScheduledTask.run_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        tasks = list(result.scalars().all())

        for task in tasks:
            task.status = TaskStatus.RUNNING
            task.attempts += 1
            task.updated_at = utcnow()
            self.session.add(task)
        await self.session.flush()
        return tasks

    async def mark_done(self, task_id: UUID) -> None:
        await self.session.execute(
            update(ScheduledTask)
            .where(ScheduledTask.id == task_id)  # type: ignore[arg-type]
            .values(status=TaskStatus.DONE, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(self, task_id: UUID, error: str) -> None:
        await self.session.execute(
            update(ScheduledTask)
            .where(ScheduledTask.id == task_id)  # type: ignore[arg-type]
            .values(status=TaskStatus.FAILED, last_error=error[:1000], updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def reset_running(self) -> int:
        """Return tasks left running by a crashed worker to the queue.

        Query:
            UPDATE scheduled_tasks SET status = 'scheduled' WHERE status = 'running'

        Returns:
            Number of tasks reset
        """
        result = await self.session.execute(
            update(ScheduledTask)
            .where(ScheduledTask.status == TaskStatus.RUNNING)  # type: ignore[arg-type]
            .values(status=TaskStatus.SCHEDULED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]
