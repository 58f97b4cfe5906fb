"""GeneratedImage repository for Pixorly backend."""

from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pixorly.models.generated_image import GeneratedImage


class GeneratedImageRepository:
    """Repository for GeneratedImage entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, image: GeneratedImage) -> GeneratedImage:
        """Persist new image record.

        Args:
            image: GeneratedImage entity to persist

        Returns:
            Persisted image with generated ID
        """
        self.session.add(image)
        await self.session.flush()
        return image

    async def get_by_id(self, image_id: UUID) -> GeneratedImage | None:
        result = await self.session.execute(
            select(GeneratedImage).where(GeneratedImage.id == image_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_visible_to(self, image_id: UUID, user_id: UUID | None) -> GeneratedImage | None:
        """Retrieve an image the caller may see: their own, or any public one.

        Args:
            image_id: Image identifier
            user_id: Caller's user id, None for anonymous callers

        Returns:
            GeneratedImage if visible, None otherwise (never reveals existence)
        """
        visibility = GeneratedImage.is_public.is_(True)  # type: ignore[attr-defined]
        if user_id is not None:
            visibility = or_(visibility, GeneratedImage.user_id == user_id)  # type: ignore[arg-type]

        result = await self.session.execute(
            select(GeneratedImage).where(
                GeneratedImage.id == image_id,  # type: ignore[arg-type]
                visibility,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_job(self, job_id: UUID) -> list[GeneratedImage]:
        result = await self.session.execute(
            select(GeneratedImage)
            .where(GeneratedImage.generation_job_id == job_id)  # type: ignore[arg-type]
            .order_by(GeneratedImage.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def count_for_user(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(GeneratedImage)
            .where(GeneratedImage.user_id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one()
