"""Profile sync for identity-provider (Clerk) user events.

Events are applied idempotently by external subject id: replaying
`user.created` never grants the free plan twice.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from pixorly.core.clock import utcnow
from pixorly.models.user import PlanTier, User
from pixorly.services.billing.plans import grant_for
from pixorly.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClerkProfile:
    external_id: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    username: Optional[str]
    profile_image: Optional[str]

    @classmethod
    def from_event_data(cls, data: dict[str, Any]) -> "ClerkProfile":
        """Extract profile fields from a Clerk `user.*` event `data` object.

        Raises:
            ValueError: If the user id is missing
        """
        external_id = data.get("id")
        if not external_id:
            raise ValueError("Missing user id in event data")

        addresses = data.get("email_addresses") or []
        email = addresses[0].get("email_address") if addresses else None

        return cls(
            external_id=external_id,
            email=email,
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            username=data.get("username"),
            profile_image=data.get("profile_image_url"),
        )


def _apply_profile(user: User, profile: ClerkProfile) -> None:
    if profile.email is not None:
        user.email = profile.email
    user.first_name = profile.first_name
    user.last_name = profile.last_name
    user.username = profile.username
    user.profile_image = profile.profile_image
    user.updated_at = utcnow()


async def upsert_user(uow: UnitOfWork, profile: ClerkProfile, restore: bool = False) -> User:
    """Create the user on the free plan, or refresh the profile if it exists.

    A soft-deleted user is brought back only when `restore` is set (a
    `user.created` event); late `user.updated` deliveries leave it deleted.

    Returns:
        The created or updated user
    """
    user = await uow.users.get_any_by_external_id(profile.external_id)

    if user is None:
        free = grant_for(PlanTier.FREE)
        user = User(
            external_id=profile.external_id,
            email=profile.email or "",
            first_name=profile.first_name,
            last_name=profile.last_name,
            username=profile.username,
            profile_image=profile.profile_image,
            plan=PlanTier.FREE,
            credits=free.credits,
            storage_quota_bytes=free.storage_quota_bytes,
        )
        await uow.users.add(user)
        logger.info("user.created", user_id=str(user.id), external_id=profile.external_id)
        return user

    if user.deleted_at is not None and not restore:
        logger.info("user.update_ignored", user_id=str(user.id), external_id=profile.external_id)
        return user

    _apply_profile(user, profile)
    user.deleted_at = None
    uow.session.add(user)
    logger.info("user.updated", user_id=str(user.id), external_id=profile.external_id)
    return user


async def delete_user(uow: UnitOfWork, external_id: str) -> bool:
    """Soft-delete a user; jobs and images are kept for audit.

    Returns:
        True if a user was marked deleted, False if unknown or already deleted
    """
    user = await uow.users.get_by_external_id(external_id)
    if user is None:
        return False

    user.deleted_at = utcnow()
    user.updated_at = user.deleted_at
    uow.session.add(user)
    logger.info("user.deleted", user_id=str(user.id), external_id=external_id)
    return True
