"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from mist.repositories.generation_request import GenerationRequestRepository
from mist.repositories.media import MediaRepository
from mist.repositories.post import PostRepository
from mist.repositories.system_state import SystemStateRepository
from mist.repositories.user import UserRepository

__all__ = [
    "UserRepository",
    "GenerationRequestRepository",
    "MediaRepository",
    "PostRepository",
    "SystemStateRepository",
]
