"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from pixorly.models.daily_usage import DailyUsage
from pixorly.models.generated_image import GeneratedImage
from pixorly.models.generation_job import GenerationJob, InvalidStateTransition, JobStatus
from pixorly.models.scheduled_task import ScheduledTask, TaskStatus
from pixorly.models.user import PlanTier, User

__all__ = [
    "User",
    "PlanTier",
    "GenerationJob",
    "JobStatus",
    "InvalidStateTransition",
    "GeneratedImage",
    "DailyUsage",
    "ScheduledTask",
    "TaskStatus",
]
