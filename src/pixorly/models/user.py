"""User entity - account with credit balance and storage quota."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint
from sqlmodel import Field, SQLModel

from pixorly.core.clock import utcnow


class PlanTier(str, Enum):
    """Subscription plan tier."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class User(SQLModel, table=True):
    """User account synced from the identity provider.

    `credits` and `storage_used_bytes` are only ever changed through
    conditional or additive UPDATE statements (see UserRepository).
    """

    __tablename__ = "users"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        CheckConstraint("storage_used_bytes >= 0", name="ck_users_storage_used_non_negative"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    external_id: str = Field(max_length=255, unique=True, index=True)
    email: str = Field(default="", max_length=320, index=True)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    profile_image: Optional[str] = Field(default=None)

    plan: PlanTier = Field(default=PlanTier.FREE)
    credits: int = Field(default=0, ge=0)
    storage_used_bytes: int = Field(default=0, ge=0, sa_type=BigInteger)
    storage_quota_bytes: int = Field(default=0, ge=0, sa_type=BigInteger)

    default_model: Optional[str] = Field(default=None, max_length=100)
    email_notifications: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None)

    @property
    def storage_remaining_bytes(self) -> int:
        return max(self.storage_quota_bytes - self.storage_used_bytes, 0)
