"""GenerationRequest repository.

Status changes after creation go through ``transition_status``, a guarded
UPDATE that only matches rows still in the expected status. Concurrent
finalizers therefore cannot both succeed.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mist.core.timezone import utcnow
from mist.models.generation_request import (
    ALLOWED_TRANSITIONS,
    GenerationRequest,
    GenerationRequestStatus,
    InvalidStateTransition,
)


class GenerationRequestRepository:
    """Repository for GenerationRequest entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, request: GenerationRequest) -> GenerationRequest:
        """Persist new generation request.

        Args:
            request: GenerationRequest entity to persist

        Returns:
            Persisted request
        """
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_by_id(self, request_id: UUID) -> GenerationRequest | None:
        """Retrieve request by UUID, refreshing any instance already in the session.

        Args:
            request_id: Request's unique identifier

        Returns:
            GenerationRequest if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationRequest)
            .where(GenerationRequest.id == request_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_user(self, request_id: UUID, user_id: UUID) -> GenerationRequest | None:
        """Retrieve a request only if it belongs to ``user_id``."""
        result = await self.session.execute(
            select(GenerationRequest).where(
                GenerationRequest.id == request_id,  # type: ignore[arg-type]
                GenerationRequest.user_id == user_id,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def list_by_user(
        self,
        user_id: UUID,
        status: Optional[GenerationRequestStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[GenerationRequest]:
        """Retrieve a user's requests, newest first.

        Args:
            user_id: Owner of the requests
            status: Optional status filter
            limit: Maximum number of requests to return (default: 20)
            offset: Number of requests to skip (default: 0)

        Returns:
            List of requests ordered by created_at descending
        """
        query = select(GenerationRequest).where(GenerationRequest.user_id == user_id)  # type: ignore[arg-type]
        if status is not None:
            query = query.where(GenerationRequest.status == status)  # type: ignore[arg-type]

        result = await self.session.execute(
            query.order_by(GenerationRequest.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def transition_status(
        self,
        request_id: UUID,
        from_status: GenerationRequestStatus,
        to_status: GenerationRequestStatus,
        ink_charged: Optional[int] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Move a request from ``from_status`` to ``to_status`` if it is still there.

        Query explanation:
        - UPDATE generation_requests SET status = to_status, ...
        - WHERE id = request_id AND status = from_status

        Args:
            request_id: Request to transition
            from_status: Status the row must currently have
            to_status: Target status
            ink_charged: Settled cost to record (terminal transitions)
            completed_at: Completion timestamp (defaults to now)

        Returns:
            True if this call performed the transition, False if the row was
            missing or already moved by another actor

        Raises:
            InvalidStateTransition: If the transition is not in the state machine
        """
        if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
            raise InvalidStateTransition(
                f"Cannot move generation request from {from_status.value} to {to_status.value}."
            )

        result = await self.session.execute(
            update(GenerationRequest)
            .where(GenerationRequest.id == request_id)  # type: ignore[arg-type]
            .where(GenerationRequest.status == from_status)  # type: ignore[arg-type]
            .values(
                status=to_status,
                ink_charged=ink_charged,
                completed_at=completed_at or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def get_stale_processing(self, cutoff: datetime, limit: int = 500) -> list[GenerationRequest]:
        """Retrieve requests still processing that were created before ``cutoff``.

        Args:
            cutoff: Requests created strictly before this time are stale
            limit: Maximum number of requests per sweep (default: 500)

        Returns:
            Stale processing requests, oldest first
        """
        result = await self.session.execute(
            select(GenerationRequest)
            .where(GenerationRequest.status == GenerationRequestStatus.PROCESSING)  # type: ignore[arg-type]
            .where(GenerationRequest.created_at < cutoff)  # type: ignore[arg-type]
            .order_by(GenerationRequest.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
