"""Post repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mist.models.post import Post


class PostRepository:
    """Repository for Post entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, post: Post) -> Post:
        self.session.add(post)
        await self.session.flush()
        return post

    async def get_by_request(self, request_id: UUID) -> Post | None:
        result = await self.session.execute(
            select(Post).where(Post.request_id == request_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()
