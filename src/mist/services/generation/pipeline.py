"""Background generation pipeline.

Runs one job end to end: dispatch to the adapter resolved from the registry,
fetch and upload each image, then hand the outcome to the reconciler. Every
failure is converted into a terminal status here; exceptions never leave
``run``.
"""

import asyncio
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

import structlog

from mist.models.generation_request import (
    GenerationParameters,
    GenerationRequest,
    GenerationRequestStatus,
)
from mist.models.media import Media
from mist.services.exceptions import (
    NoImagesGeneratedError,
    ReconciliationError,
    ServiceError,
)
from mist.services.generation.adapters.base import (
    GeneratedImage,
    ProviderAdapter,
    WebhookAdapter,
)
from mist.services.generation.reconciler import CompletionReconciler
from mist.services.generation.registry import ProviderRegistry
from mist.services.retry import RetryPolicy
from mist.services.storage.backblaze_client import BackblazeClient

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GenerationJob:
    """Detached snapshot of a request handed to the worker pool."""

    request_id: UUID
    user_id: UUID
    parameters: GenerationParameters

    @classmethod
    def from_request(cls, request: GenerationRequest) -> "GenerationJob":
        return cls(request_id=request.id, user_id=request.user_id, parameters=request.params)


class GenerationPipeline:
    def __init__(
        self,
        registry: ProviderRegistry,
        storage: BackblazeClient,
        reconciler: CompletionReconciler,
        retry: RetryPolicy,
        callback_base_url: str,
    ):
        self.registry = registry
        self.storage = storage
        self.reconciler = reconciler
        self.retry = retry
        self.callback_base_url = callback_base_url.rstrip("/")

    async def run(self, job: GenerationJob) -> None:
        """Generate, store and finalize one job."""
        params = job.parameters
        log = logger.bind(request_id=str(job.request_id), provider=params.provider, model=params.model)
        log.info("generation.started")

        try:
            adapter = self.registry.resolve(params.provider, params.model).adapter
            log = log.bind(style=adapter.style.value)

            if isinstance(adapter, WebhookAdapter):
                callback_url = f"{self.callback_base_url}/{adapter.webhook_name}"
                await adapter.dispatch(params, job.request_id, callback_url)
                log.info("generation.dispatched", callback_url=callback_url)
                return

            images = await adapter.generate(params)  # type: ignore[attr-defined]
            media = await self.materialize(job, adapter, images)
            if not media:
                raise NoImagesGeneratedError(f"{len(images)} images returned, none stored")

        except ServiceError as e:
            log.warning("generation.failed", error=str(e), error_type=type(e).__name__)
            await self._finalize(job, GenerationRequestStatus.ERROR, [])
            return

        except Exception as e:
            log.error("generation.crashed", error=str(e), error_type=type(e).__name__, exc_info=True)
            await self._finalize(job, GenerationRequestStatus.ERROR, [])
            return

        log.info("generation.succeeded", requested=params.count, produced=len(media))
        await self._finalize(job, GenerationRequestStatus.COMPLETED, media)

    async def complete_from_webhook(
        self, job: GenerationJob, adapter: WebhookAdapter, output: list[dict[str, Any]]
    ) -> None:
        """Store the images a webhook delivered and finalize the request."""
        log = logger.bind(request_id=str(job.request_id), provider=adapter.provider)
        try:
            # Providers may return more images than were paid for
            images = adapter.parse_completion(output)[: job.parameters.count]
            media = await self.materialize(job, adapter, images)
        except Exception as e:
            log.error("generation.webhook_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            media = []

        status = GenerationRequestStatus.COMPLETED if media else GenerationRequestStatus.ERROR
        log.info("generation.webhook_received", produced=len(media))
        await self._finalize(job, status, media)

    async def materialize(
        self, job: GenerationJob, adapter: ProviderAdapter, images: list[GeneratedImage]
    ) -> list[Media]:
        """Fetch and upload every image concurrently; images that fail are dropped."""
        results = await asyncio.gather(
            *(self._store(job, adapter, image) for image in images), return_exceptions=True
        )

        media = []
        for result in results:
            if isinstance(result, Media):
                media.append(result)
            elif isinstance(result, Exception):
                logger.warning(
                    "generation.image_dropped",
                    request_id=str(job.request_id),
                    error=str(result),
                    error_type=type(result).__name__,
                )
            elif isinstance(result, BaseException):
                raise result
        return media

    async def _store(self, job: GenerationJob, adapter: ProviderAdapter, image: GeneratedImage) -> Media:
        if image.data is not None:
            data = image.data
        elif image.url:
            data = await adapter.download(image.url)
        else:
            raise NoImagesGeneratedError("Image has neither data nor URL")

        media_id = uuid4()
        stored = await self.retry.run(
            "storage.upload",
            self.storage.upload,
            data,
            image.mime_type,
            f"media/{job.user_id}/{media_id}",
        )

        params = job.parameters
        return Media(
            id=media_id,
            request_id=job.request_id,
            user_id=job.user_id,
            file_id=stored.file_id,
            file_name=stored.file_name,
            url=stored.url,
            width=params.width,
            height=params.height,
            mime_type=stored.mime_type,
            provider=params.provider,
            model=params.model or "",
            seed=image.seed,
        )

    async def _finalize(
        self, job: GenerationJob, status: GenerationRequestStatus, media: list[Media]
    ) -> None:
        try:
            await self.reconciler.finalize_with_retry(job.request_id, status, media)
        except ReconciliationError:
            # Logged at critical by the reconciler. The request is still
            # processing, so the janitor finalizes it once it goes stale.
            return
