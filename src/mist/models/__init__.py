"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from mist.models.generation_request import (
    GenerationParameters,
    GenerationRequest,
    GenerationRequestStatus,
    InvalidStateTransition,
)
from mist.models.media import Media
from mist.models.post import Post
from mist.models.system_state import API_STATUS_KEY, ApiStatus, SystemState
from mist.models.user import User

__all__ = [
    "User",
    "GenerationRequest",
    "GenerationRequestStatus",
    "GenerationParameters",
    "InvalidStateTransition",
    "Media",
    "Post",
    "SystemState",
    "ApiStatus",
    "API_STATUS_KEY",
]
