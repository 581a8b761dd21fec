"""Post entity - social post published from a completed generation."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from mist.core.timezone import utcnow


class Post(SQLModel, table=True):
    """Post shares the media of one generation request."""

    __tablename__ = "posts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    request_id: Optional[UUID] = Field(default=None, foreign_key="generation_requests.id")
    title: str = Field(max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)
