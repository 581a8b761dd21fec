"""Generation request endpoints.

- POST /api/generation-requests - Submit a request (202, generation runs in the background)
- GET /api/generation-requests/{request_id} - One of the caller's requests with its media
- GET /api/generation-requests - The caller's requests, newest first
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from mist.api.dependencies import get_current_user_id, get_supervisor, get_uow_factory
from mist.models.generation_request import (
    GenerationParameters,
    GenerationRequest,
    GenerationRequestStatus,
)
from mist.models.media import Media
from mist.services.generation.supervisor import GenerationSupervisor
from mist.uow import UowFactory

logger = structlog.get_logger()
router = APIRouter(prefix="/api/generation-requests", tags=["generation-requests"])


class MediaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    url: str
    width: int
    height: int
    mime_type: str
    provider: str
    model: str
    seed: Optional[str] = None
    created_at: datetime


class GenerationRequestResponse(BaseModel):
    """Request as returned to its owner."""

    id: UUID
    user_id: UUID
    status: GenerationRequestStatus
    parameters: dict[str, Any]
    ink_reserved: int
    ink_charged: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    media: list[MediaResponse] = []

    @classmethod
    def build(cls, request: GenerationRequest, media: list[Media] | None = None) -> "GenerationRequestResponse":
        return cls(
            id=request.id,
            user_id=request.user_id,
            status=request.status,
            parameters=request.parameters,
            ink_reserved=request.ink_reserved,
            ink_charged=request.ink_charged,
            created_at=request.created_at,
            completed_at=request.completed_at,
            media=[MediaResponse.model_validate(m) for m in media or []],
        )


@router.post("", response_model=GenerationRequestResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_generation_request(
    parameters: GenerationParameters,
    user_id: UUID = Depends(get_current_user_id),
    supervisor: GenerationSupervisor = Depends(get_supervisor),
) -> GenerationRequestResponse:
    """Reserve ink and start generating.

    Rejections (validation, moderation, ink, maintenance) are raised as
    ``SubmissionError`` and rendered by the application's exception handler.
    """
    request = await supervisor.submit(parameters, user_id)
    return GenerationRequestResponse.build(request)


@router.get("/{request_id}", response_model=GenerationRequestResponse)
async def get_generation_request(
    request_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    uow_factory: UowFactory = Depends(get_uow_factory),
) -> GenerationRequestResponse:
    async with await uow_factory() as uow:
        request = await uow.generation_requests.get_for_user(request_id, user_id)
        if request is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation request not found")
        media = await uow.media.get_by_request(request_id)

    return GenerationRequestResponse.build(request, media)


@router.get("", response_model=list[GenerationRequestResponse])
async def list_generation_requests(
    status_filter: Optional[GenerationRequestStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: UUID = Depends(get_current_user_id),
    uow_factory: UowFactory = Depends(get_uow_factory),
) -> list[GenerationRequestResponse]:
    async with await uow_factory() as uow:
        requests = await uow.generation_requests.list_by_user(
            user_id, status=status_filter, limit=limit, offset=offset
        )

    return [GenerationRequestResponse.build(r) for r in requests]
