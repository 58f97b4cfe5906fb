"""DailyUsage entity - per-user per-day generation counters."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from pixorly.core.clock import utcnow


class DailyUsage(SQLModel, table=True):
    """Usage counters for one user on one UTC calendar date.

    `date` is the ISO `YYYY-MM-DD` key. Rows are created on the first event of
    the day and only incremented afterwards.
    """

    __tablename__ = "daily_usage"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_usage_user_date"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    date: str = Field(max_length=10, index=True)

    generations_count: int = Field(default=0, ge=0)
    generations_success: int = Field(default=0, ge=0)
    generations_failed: int = Field(default=0, ge=0)
    credits_used: int = Field(default=0, ge=0)
    model_usage: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
