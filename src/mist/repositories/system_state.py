"""SystemState repository.

Provides data access methods for the SystemState key-value store.
"""

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mist.core.timezone import utcnow
from mist.models.system_state import API_STATUS_KEY, ApiStatus, SystemState


class SystemStateRepository:
    """Repository for SystemState key-value store.

    Setting state is an upsert keyed on the primary key. State values are
    stored as JSON and automatically serialized/deserialized.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_state(self, key: str) -> Any | None:
        """Retrieve state value for a key.

        Args:
            key: State key (e.g., "api_status")

        Returns:
            Deserialized state value if found, None otherwise
        """
        result = await self.session.execute(
            select(SystemState)
            .where(SystemState.key == key)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        state = result.scalar_one_or_none()
        return state.state_value if state else None

    async def set_state(self, key: str, value: Any) -> None:
        """Set state value for a key (UPSERT).

        ``session.merge`` loads the existing row by primary key and updates it,
        or inserts a new one.

        Args:
            key: State key (alphanumeric + underscores only)
            value: State value (must be JSON-serializable)
        """
        await self.session.merge(SystemState(key=key, state_value=value, updated_at=utcnow()))
        await self.session.flush()

    async def delete_state(self, key: str) -> bool:
        """Delete state entry for a key (idempotent).

        Returns:
            True if key was deleted, False if key did not exist
        """
        result = await self.session.execute(delete(SystemState).where(SystemState.key == key))  # type: ignore[arg-type]
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def get_api_status(self) -> ApiStatus:
        """Current API status; a missing or unreadable entry means online."""
        value = await self.get_state(API_STATUS_KEY)
        if isinstance(value, dict):
            try:
                return ApiStatus(value.get("status"))
            except ValueError:
                return ApiStatus.ONLINE
        return ApiStatus.ONLINE

    async def set_api_status(self, status: ApiStatus) -> None:
        await self.set_state(API_STATUS_KEY, {"status": status.value})
