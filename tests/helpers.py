"""Builders shared by the test modules."""

from uuid import UUID

from mist.models.generation_request import (
    GenerationParameters,
    GenerationRequest,
    GenerationRequestStatus,
)
from mist.models.user import User
from mist.services.generation.adapters.base import GeneratedImage, SynchronousAdapter
from mist.services.generation.registry import DALLE_SIZES, ProviderRegistry
from mist.services.ink import calculate_ink_cost
from mist.services.retry import RetryPolicy


async def read_user(uow_factory, user_id: UUID) -> User:
    async with await uow_factory() as uow:
        found = await uow.users.get_by_id(user_id)
    assert found is not None
    return found


async def read_request(uow_factory, request_id: UUID) -> GenerationRequest:
    async with await uow_factory() as uow:
        found = await uow.generation_requests.get_by_id(request_id)
    assert found is not None
    return found


def make_parameters(**overrides) -> GenerationParameters:
    values = {
        "prompt": "a cat",
        "count": 2,
        "width": 512,
        "height": 512,
        "provider": "dalle",
        "model": "dalle",
    }
    values.update(overrides)
    return GenerationParameters(**values)


async def create_processing_request(
    uow_factory, user: User, parameters: GenerationParameters | None = None, **fields
) -> GenerationRequest:
    """Insert a processing request with its ink reserved, as the supervisor would."""
    parameters = parameters or make_parameters()
    cost = calculate_ink_cost(parameters)
    async with await uow_factory() as uow:
        assert await uow.users.reserve_ink(user.id, cost)
        return await uow.generation_requests.add(
            GenerationRequest(
                user_id=user.id,
                status=GenerationRequestStatus.PROCESSING,
                parameters=parameters.model_dump(),
                ink_reserved=cost,
                **fields,
            )
        )


class FakeAdapter(SynchronousAdapter):
    """Synchronous adapter returning a fixed number of PNG payloads."""

    provider = "dalle"

    def __init__(self, produced: int | None = None, error: Exception | None = None):
        super().__init__(http=None, retry=RetryPolicy(attempts=3, interval=0))  # type: ignore[arg-type]
        self.produced = produced
        self.error = error
        self.calls = 0

    async def generate_once(self, parameters: GenerationParameters) -> list[GeneratedImage]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        count = parameters.count if self.produced is None else self.produced
        return [GeneratedImage(data=f"png-{i}".encode(), seed=str(i)) for i in range(count)]


def make_registry(adapter: SynchronousAdapter) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("dalle", "dalle", adapter, DALLE_SIZES, range(1, 9), default=True)
    return registry
