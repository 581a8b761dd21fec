"""Media entity - one stored image produced by a generation request."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from mist.core.timezone import utcnow


class Media(SQLModel, table=True):
    """Media is immutable once created, except for the optional post back-reference."""

    __tablename__ = "media"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="generation_requests.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    post_id: Optional[UUID] = Field(default=None, foreign_key="posts.id")
    file_id: str = Field(max_length=255)
    file_name: str = Field(max_length=255)
    url: str
    width: int
    height: int
    mime_type: str = Field(max_length=50)
    provider: str = Field(max_length=50)
    model: str = Field(max_length=100)
    seed: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=utcnow)
