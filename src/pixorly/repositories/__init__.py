"""Repository layer for Pixorly backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from pixorly.repositories.generated_image import GeneratedImageRepository
from pixorly.repositories.generation_job import GenerationJobRepository
from pixorly.repositories.scheduled_task import ScheduledTaskRepository
from pixorly.repositories.usage import DailyUsageRepository
from pixorly.repositories.user import UserRepository

__all__ = [
    "UserRepository",
    "GenerationJobRepository",
    "GeneratedImageRepository",
    "DailyUsageRepository",
    "ScheduledTaskRepository",
]
