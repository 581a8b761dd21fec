"""Tests for GenerationPipeline.

Focus areas:
- Webhook-style providers are dispatched, not finalized
- Webhook completions store images and finalize
- Unexpected crashes still produce a terminal status
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from mist.models import GenerationRequestStatus
from mist.services.exceptions import ProviderTransientError, ReconciliationError
from mist.services.generation.adapters import ModalAdapter
from mist.services.generation.pipeline import GenerationJob, GenerationPipeline
from mist.services.generation.reconciler import CompletionReconciler
from mist.services.generation.registry import MIST_SIZES
from mist.services.retry import RetryPolicy
from tests.helpers import (
    FakeAdapter,
    create_processing_request,
    make_parameters,
    make_registry,
    read_request,
    read_user,
)

NO_WAIT = RetryPolicy(attempts=1, interval=0)


def image_server(request: httpx.Request) -> httpx.Response:
    if request.url.host == "modal.run":
        return httpx.Response(200, json={"accepted": True})
    if request.url.path.endswith("broken.png"):
        return httpx.Response(404)
    return httpx.Response(200, content=b"png-bytes")


@pytest.fixture
def http():
    return httpx.AsyncClient(transport=httpx.MockTransport(image_server))


@pytest.fixture
def modal(http):
    return ModalAdapter(http, NO_WAIT, endpoint_url="https://modal.run/openjourney", secret="s")


@pytest.fixture
def pipeline(uow_factory, storage, notifier, modal):
    registry = make_registry(FakeAdapter())
    registry.register("mist", "openjourney", modal, MIST_SIZES, (1, 4))
    reconciler = CompletionReconciler(uow_factory, storage, notifier, retry=NO_WAIT)
    return GenerationPipeline(registry, storage, reconciler, NO_WAIT, "https://api.mist.example/webhooks/")


@pytest.mark.asyncio
async def test_webhook_provider_is_dispatched_and_left_processing(uow_factory, user, pipeline):
    params = make_parameters(provider="mist", model="openjourney", count=1)
    request = await create_processing_request(uow_factory, user, params)

    await pipeline.run(GenerationJob.from_request(request))

    assert (await read_request(uow_factory, request.id)).status == GenerationRequestStatus.PROCESSING


@pytest.mark.asyncio
async def test_webhook_completion_downloads_and_finalizes(uow_factory, user, pipeline, modal, storage):
    params = make_parameters(provider="mist", model="openjourney", count=4)
    request = await create_processing_request(uow_factory, user, params)
    output = [
        {"url": "https://modal.example/0.png", "seed": 11},
        {"url": "https://modal.example/broken.png", "seed": 12},
    ]

    await pipeline.complete_from_webhook(GenerationJob.from_request(request), modal, output)

    stored_request = await read_request(uow_factory, request.id)
    async with await uow_factory() as uow:
        media = await uow.media.get_by_request(request.id)
    assert stored_request.status == GenerationRequestStatus.COMPLETED
    assert stored_request.ink_charged == 10
    assert [m.seed for m in media] == ["11"]
    assert media[0].file_name.startswith(f"media/{user.id}/")
    assert storage.upload.await_count == 1


@pytest.mark.asyncio
async def test_webhook_completion_beyond_requested_count_is_truncated(
    uow_factory, user, pipeline, modal, storage
):
    params = make_parameters(provider="mist", model="openjourney", count=1)
    request = await create_processing_request(uow_factory, user, params)
    output = [{"url": f"https://modal.example/{i}.png", "seed": i} for i in range(4)]

    await pipeline.complete_from_webhook(GenerationJob.from_request(request), modal, output)

    stored_request = await read_request(uow_factory, request.id)
    async with await uow_factory() as uow:
        media = await uow.media.get_by_request(request.id)
    assert stored_request.status == GenerationRequestStatus.COMPLETED
    assert stored_request.ink_charged == 10
    assert [m.seed for m in media] == ["0"]
    assert storage.upload.await_count == 1


@pytest.mark.asyncio
async def test_empty_webhook_completion_refunds(uow_factory, user, pipeline, modal):
    params = make_parameters(provider="mist", model="openjourney", count=1)
    request = await create_processing_request(uow_factory, user, params)

    await pipeline.complete_from_webhook(GenerationJob.from_request(request), modal, [])

    stored_user = await read_user(uow_factory, user.id)
    assert (await read_request(uow_factory, request.id)).status == GenerationRequestStatus.ERROR
    assert stored_user.ink_available == 100
    assert stored_user.ink_pending == 0


@pytest.mark.asyncio
async def test_unexpected_crash_finalizes_as_error(uow_factory, user, storage, notifier):
    reconciler = CompletionReconciler(uow_factory, storage, notifier, retry=NO_WAIT)
    pipeline = GenerationPipeline(
        make_registry(FakeAdapter(error=KeyError("surprise"))), storage, reconciler, NO_WAIT, "http://x"
    )
    request = await create_processing_request(uow_factory, user)

    await pipeline.run(GenerationJob.from_request(request))

    assert (await read_request(uow_factory, request.id)).status == GenerationRequestStatus.ERROR


@pytest.mark.asyncio
async def test_failed_finalization_does_not_escape(storage):
    reconciler = AsyncMock(spec=CompletionReconciler)
    reconciler.finalize_with_retry.side_effect = ReconciliationError("db down")
    pipeline = GenerationPipeline(
        make_registry(FakeAdapter(error=ProviderTransientError("busy"))), storage, reconciler, NO_WAIT, "http://x"
    )
    job = GenerationJob(request_id=uuid4(), user_id=uuid4(), parameters=make_parameters())

    await pipeline.run(job)

    reconciler.finalize_with_retry.assert_awaited_once_with(job.request_id, GenerationRequestStatus.ERROR, [])
