"""Provider completion webhooks.

``POST /webhooks/{provider}`` receives the results of webhook-completed jobs.
The handler only authenticates, looks up the request and queues the work;
downloading, uploading and finalizing run on the generation worker pool.
"""

from typing import Annotated, Optional, Union
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel

from mist.api.dependencies import bearer_token, get_registry, get_uow_factory, get_worker_pool
from mist.models.generation_request import GenerationRequestStatus
from mist.services.exceptions import InvalidParametersError
from mist.services.generation.pipeline import GenerationJob
from mist.services.generation.registry import ProviderRegistry
from mist.uow import UowFactory
from mist.workers.generation_worker import GenerationWorkerPool

logger = structlog.get_logger()
router = APIRouter()


class WebhookImage(BaseModel):
    url: str
    seed: Optional[Union[int, str]] = None


class WebhookPayload(BaseModel):
    request_id: str
    output: list[WebhookImage] = []


@router.post("/{provider}")
async def receive_provider_webhook(
    provider: str,
    payload: WebhookPayload,
    authorization: Annotated[str | None, Header()] = None,
    registry: ProviderRegistry = Depends(get_registry),
    uow_factory: UowFactory = Depends(get_uow_factory),
    pool: GenerationWorkerPool = Depends(get_worker_pool),
) -> dict[str, str]:
    """Accept a provider's completion callback.

    Returns:
        {"status": "accepted"} when the completion was queued, or
        {"status": "ignored"} for unknown or already finalized requests, or
        requests served by another provider (the provider must not retry those)

    Raises:
        HTTPException 404: No webhook-completed provider with this name
        HTTPException 401: Missing or wrong bearer secret
        HTTPException 503: Worker queue is full (provider should retry)
    """
    adapter = registry.webhook_adapter(provider)
    if adapter is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown webhook provider")

    if not adapter.verify_secret(bearer_token(authorization)):
        logger.warning("webhook.unauthorized", provider=provider)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    try:
        request_id = UUID(payload.request_id)
    except ValueError:
        logger.warning("webhook.invalid_request_id", provider=provider, request_id=payload.request_id)
        return {"status": "ignored"}

    async with await uow_factory() as uow:
        request = await uow.generation_requests.get_by_id(request_id)

    if request is None:
        logger.warning("webhook.request_not_found", provider=provider, request_id=str(request_id))
        return {"status": "ignored"}

    if request.status != GenerationRequestStatus.PROCESSING:
        logger.info(
            "webhook.request_already_final",
            provider=provider,
            request_id=str(request_id),
            status=request.status.value,
        )
        return {"status": "ignored"}

    params = request.params
    try:
        served_by = registry.resolve(params.provider, params.model).adapter
    except InvalidParametersError:
        served_by = None
    if served_by is not adapter:
        logger.warning(
            "webhook.provider_mismatch",
            provider=provider,
            request_id=str(request_id),
            request_provider=params.provider,
            request_model=params.model,
        )
        return {"status": "ignored"}

    output = [image.model_dump() for image in payload.output]
    if not pool.submit_completion(GenerationJob.from_request(request), adapter, output):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Worker queue is full")

    logger.info("webhook.accepted", provider=provider, request_id=str(request_id), images=len(output))
    return {"status": "accepted"}
