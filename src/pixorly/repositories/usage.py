"""DailyUsage repository for Pixorly backend.

Provides the insert-or-ignore plus row lock used by the usage aggregator to
increment per-day counters without ever overwriting a row wholesale.
"""

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from pixorly.core.clock import utcnow
from pixorly.models.daily_usage import DailyUsage


class DailyUsageRepository:
    """Repository for DailyUsage counter rows."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert(DailyUsage)
        return postgresql.insert(DailyUsage)

    async def ensure_row(self, user_id: UUID, date: str) -> None:
        """Create the (user, date) row with zero counters unless it exists.

        Query:
            INSERT INTO daily_usage (...) VALUES (...)
            ON CONFLICT (user_id, date) DO NOTHING

        Args:
            user_id: Owner of the usage row
            date: ISO date key (YYYY-MM-DD, UTC)
        """
        now = utcnow()
        stmt = (
            self._insert()
            .values(
                id=uuid4(),
                user_id=user_id,
                date=date,
                generations_count=0,
                generations_success=0,
                generations_failed=0,
                credits_used=0,
                model_usage={},
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "date"])
        )
        await self.session.execute(stmt)

    async def get_for_update(self, user_id: UUID, date: str) -> DailyUsage | None:
        """Retrieve the (user, date) row with a row lock held until commit."""
        result = await self.session.execute(
            select(DailyUsage)
            .where(
                DailyUsage.user_id == user_id,  # type: ignore[arg-type]
                DailyUsage.date == date,  # type: ignore[arg-type]
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_since(self, user_id: UUID, since_date: str) -> list[DailyUsage]:
        """List a user's usage rows on or after a date, newest first."""
        result = await self.session.execute(
            select(DailyUsage)
            .where(
                DailyUsage.user_id == user_id,  # type: ignore[arg-type]
                DailyUsage.date >= since_date,  # type: ignore[arg-type]
            )
            .order_by(DailyUsage.date.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
