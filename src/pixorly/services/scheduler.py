"""Durable "run this task after N milliseconds" primitive backed by the database."""

from datetime import timedelta
from typing import Optional, Protocol
from uuid import UUID

import structlog

from pixorly.core.clock import utcnow
from pixorly.models.scheduled_task import ScheduledTask
from pixorly.uow import UnitOfWork

logger = structlog.get_logger(__name__)

PROCESS_GENERATION = "process_generation"


class TaskScheduler(Protocol):
    """Schedules a task inside the caller's transaction."""

    async def run_after(
        self,
        uow: UnitOfWork,
        delay_ms: int,
        task_name: str,
        job_id: UUID,
        payload: Optional[dict] = None,
    ) -> ScheduledTask: ...


class DatabaseTaskScheduler:
    """Inserts a ScheduledTask row; the generation worker picks it up when due.

    The row commits or rolls back with the caller's unit of work, so a job
    and its first wake-up are persisted atomically.
    """

    async def run_after(
        self,
        uow: UnitOfWork,
        delay_ms: int,
        task_name: str,
        job_id: UUID,
        payload: Optional[dict] = None,
    ) -> ScheduledTask:
        if delay_ms < 0:
            raise ValueError("delay_ms must not be negative")

        task = ScheduledTask(
            task_name=task_name,
            job_id=job_id,
            payload=payload or {},
            run_at=utcnow() + timedelta(milliseconds=delay_ms),
        )
        await uow.tasks.add(task)

        logger.info(
            "scheduler.task_scheduled",
            task_id=str(task.id),
            task_name=task_name,
            job_id=str(job_id),
            delay_ms=delay_ms,
        )
        return task
