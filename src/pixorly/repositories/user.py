"""User repository for Pixorly backend.

Provides data access for User entities. Credit and storage counters are only
changed through single conditional or additive UPDATE statements so that
concurrent requests for the same user cannot overspend or overfill.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pixorly.core.clock import utcnow
from pixorly.models.user import PlanTier, User


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Retrieve user by internal UUID.

        Args:
            user_id: User's unique identifier

        Returns:
            User if found, None otherwise
        """
        result = await self.session.execute(select(User).where(User.id == user_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> User | None:
        """Retrieve an active user by identity-provider subject.

        Soft-deleted users are treated as missing.

        Args:
            external_id: Subject claim issued by the identity provider

        Returns:
            User if found and not deleted, None otherwise
        """
        result = await self.session.execute(
            select(User).where(
                User.external_id == external_id,  # type: ignore[arg-type]
                User.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalar_one_or_none()

    async def get_any_by_external_id(self, external_id: str) -> User | None:
        """Retrieve user by subject including soft-deleted rows (webhook upsert)."""
        result = await self.session.execute(
            select(User).where(User.external_id == external_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        """Persist new user to database.

        Args:
            user: User entity to persist

        Returns:
            Persisted user with generated ID
        """
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_credits(self, user_id: UUID) -> int | None:
        """Read the current credit balance straight from the database."""
        result = await self.session.execute(
            select(User.credits).where(User.id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def debit_credits(self, user_id: UUID, amount: int) -> int | None:
        """Conditionally debit credits in one statement.

        Query:
            UPDATE users SET credits = credits - :amount
            WHERE id = :user_id AND credits >= :amount
            RETURNING credits

        Args:
            user_id: User to debit
            amount: Non-negative number of credits

        Returns:
            Remaining balance, or None when the balance was too low (no change)
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.credits >= amount)  # type: ignore[arg-type]
            .values(credits=User.credits - amount, updated_at=utcnow())
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def credit_credits(self, user_id: UUID, amount: int) -> int | None:
        """Additively credit the balance.

        Returns:
            New balance, or None if the user does not exist
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .values(credits=User.credits + amount, updated_at=utcnow())
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def set_plan(
        self, user_id: UUID, plan: PlanTier, credits: int, storage_quota_bytes: int
    ) -> None:
        """Apply a plan grant: plan tier, credit balance and storage quota."""
        await self.session.execute(
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .values(
                plan=plan,
                credits=credits,
                storage_quota_bytes=storage_quota_bytes,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def increment_storage(self, user_id: UUID, size_bytes: int) -> bool:
        """Additively increase storage used, re-checking the quota.

        Query:
            UPDATE users SET storage_used_bytes = storage_used_bytes + :size
            WHERE id = :user_id AND storage_used_bytes + :size <= storage_quota_bytes

        Args:
            user_id: Owner of the uploaded object
            size_bytes: Size of the uploaded object

        Returns:
            True if the counter was incremented, False if it would exceed quota
        """
        result = await self.session.execute(
            update(User)
            .where(
                User.id == user_id,  # type: ignore[arg-type]
                User.storage_used_bytes + size_bytes <= User.storage_quota_bytes,
            )
            .values(
                storage_used_bytes=User.storage_used_bytes + size_bytes,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
