"""FastAPI dependencies for request context and shared services.

This module provides reusable FastAPI dependencies for:
- Caller identity (set by the upstream auth gateway)
- Access to services built in the application lifespan
"""

from typing import Annotated
from uuid import UUID

from fastapi import Header, HTTPException, Request, status

from mist.services.generation.registry import ProviderRegistry
from mist.services.generation.supervisor import GenerationSupervisor
from mist.uow import UowFactory
from mist.workers.generation_worker import GenerationWorkerPool


def get_uow_factory(request: Request) -> UowFactory:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.generation_requests.get_by_id(request_id)
    """
    return request.app.state.uow_factory


def get_supervisor(request: Request) -> GenerationSupervisor:
    return request.app.state.supervisor


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_worker_pool(request: Request) -> GenerationWorkerPool:
    return request.app.state.worker_pool


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """Identity of the caller, forwarded by the auth gateway in ``X-User-Id``.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header"
        ) from None


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header ("" if absent)."""
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()
