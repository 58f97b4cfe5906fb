"""ScheduledTask entity - durable delayed task for background workers."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from pixorly.core.clock import utcnow


class TaskStatus(str, Enum):
    """Scheduled task status."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class ScheduledTask(SQLModel, table=True):
    """A unit of background work that becomes due at `run_at`."""

    __tablename__ = "scheduled_tasks"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_name: str = Field(max_length=100)
    job_id: UUID = Field(foreign_key="generation_jobs.id", index=True)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    run_at: datetime = Field(index=True)
    status: TaskStatus = Field(default=TaskStatus.SCHEDULED, index=True)
    attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
