"""User entity - the ink (credit) balances a generation request draws from."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from mist.core.timezone import utcnow


class User(SQLModel, table=True):
    """Subset of the user record that the generation lifecycle reads and mutates.

    Balances are only ever changed through the conditional UPDATE statements in
    ``UserRepository`` so that concurrent requests from one user never lose updates.
    """

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    username: str = Field(max_length=255, unique=True, index=True)
    ink_available: int = Field(default=0, ge=0)
    ink_pending: int = Field(default=0, ge=0)
    ink_lifetime: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def spendable_ink(self) -> int:
        """Ink that is neither spent nor reserved by an in-flight request."""
        return self.ink_available - self.ink_pending
