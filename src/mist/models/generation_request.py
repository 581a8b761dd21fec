"""GenerationRequest entity - one user submission tracked to a terminal outcome."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from mist.core.timezone import utcnow


class GenerationRequestStatus(str, Enum):
    """Generation request lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELED = "canceled"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {
        GenerationRequestStatus.COMPLETED,
        GenerationRequestStatus.CANCELED,
        GenerationRequestStatus.ERROR,
    }
)

ALLOWED_TRANSITIONS: dict[GenerationRequestStatus, frozenset[GenerationRequestStatus]] = {
    GenerationRequestStatus.PENDING: frozenset(
        {GenerationRequestStatus.PROCESSING, GenerationRequestStatus.CANCELED}
    ),
    GenerationRequestStatus.PROCESSING: frozenset(
        {
            GenerationRequestStatus.COMPLETED,
            GenerationRequestStatus.ERROR,
            GenerationRequestStatus.CANCELED,
        }
    ),
}


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation request state transition."""

    pass


def _clean_text(value: str) -> str:
    return value.strip().replace("\n", " ").replace("\r", " ")


class GenerationParameters(BaseModel):
    """Immutable description of what the user asked for.

    Stored as JSON on the request row and never mutated after creation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt: str = PydanticField(min_length=1, max_length=1000)
    count: int = PydanticField(ge=1, le=8)
    width: int = PydanticField(gt=0, le=2048)
    height: int = PydanticField(gt=0, le=2048)
    provider: str = PydanticField(min_length=1, max_length=50)
    model: Optional[str] = PydanticField(default=None, max_length=100)
    negative_prompt: Optional[str] = PydanticField(default=None, min_length=1, max_length=1000)
    cfg_scale: Optional[int] = PydanticField(default=None, ge=1, le=20)
    # Stored with the request for clients; no provider reads it
    input_media_id: Optional[str] = PydanticField(default=None, min_length=36, max_length=36)
    publish: bool = False

    def sanitized(self, default_model: str) -> "GenerationParameters":
        """Return a copy with whitespace-normalized text and the model resolved.

        Line breaks in the prompts are replaced by spaces; a missing model falls
        back to the provider's default.
        """
        return self.model_copy(
            update={
                "prompt": _clean_text(self.prompt),
                "negative_prompt": (
                    _clean_text(self.negative_prompt) if self.negative_prompt else None
                ),
                "model": self.model or default_model,
            }
        )


class GenerationRequest(SQLModel, table=True):
    """GenerationRequest tracks a submission from reservation to settlement."""

    __tablename__ = "generation_requests"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    status: GenerationRequestStatus = Field(default=GenerationRequestStatus.PENDING, index=True)
    parameters: dict = Field(sa_column=Column(JSON, nullable=False))
    ink_reserved: int = Field(default=0, ge=0)
    ink_charged: Optional[int] = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def params(self) -> GenerationParameters:
        """Parameters as the immutable value object."""
        return GenerationParameters.model_validate(self.parameters)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def ensure_transition(self, target: GenerationRequestStatus) -> None:
        """Check that moving to ``target`` goes forward through the state machine.

        Raises:
            InvalidStateTransition: If ``target`` is not reachable from the current status
        """
        allowed = ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if target not in allowed:
            raise InvalidStateTransition(
                f"Cannot move generation request from {self.status.value} to {target.value}."
            )

    def mark_processing(self) -> None:
        """Transition from pending to processing.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        self.ensure_transition(GenerationRequestStatus.PROCESSING)
        self.status = GenerationRequestStatus.PROCESSING
