"""Media repository."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mist.models.media import Media


class MediaRepository:
    """Repository for Media entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_all(self, media: list[Media]) -> list[Media]:
        """Insert a batch of media rows in one flush.

        Args:
            media: Media entities produced by one request

        Returns:
            The persisted media
        """
        self.session.add_all(media)
        await self.session.flush()
        return media

    async def get_by_request(self, request_id: UUID) -> list[Media]:
        """Retrieve all media produced by a request, oldest first."""
        result = await self.session.execute(
            select(Media)
            .where(Media.request_id == request_id)  # type: ignore[arg-type]
            .order_by(Media.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def attach_post(self, media_ids: list[UUID], post_id: UUID) -> int:
        """Set the post back-reference on the given media.

        Returns:
            Number of media rows updated
        """
        if not media_ids:
            return 0
        result = await self.session.execute(
            update(Media)
            .where(Media.id.in_(media_ids))  # type: ignore[attr-defined]
            .values(post_id=post_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]
