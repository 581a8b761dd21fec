"""Job supervisor - accepts generation requests.

``submit`` checks everything that can reject a request before anything is
persisted, then reserves ink and inserts the request in one transaction, and
finally hands the job to the worker pool without waiting for it.
"""

from uuid import UUID

import structlog

from mist.models.generation_request import (
    GenerationParameters,
    GenerationRequest,
    GenerationRequestStatus,
)
from mist.models.system_state import ApiStatus
from mist.services.exceptions import (
    InsufficientInkError,
    MaintenanceError,
    ModerationRejectedError,
    UserNotFoundError,
)
from mist.services.generation.pipeline import GenerationJob
from mist.services.generation.registry import ProviderRegistry
from mist.services.ink import calculate_ink_cost
from mist.services.moderation import ModerationClient
from mist.uow import UowFactory
from mist.workers.generation_worker import GenerationWorkerPool

logger = structlog.get_logger(__name__)


class GenerationSupervisor:
    def __init__(
        self,
        uow_factory: UowFactory,
        registry: ProviderRegistry,
        moderation: ModerationClient,
        pool: GenerationWorkerPool,
    ):
        self.uow_factory = uow_factory
        self.registry = registry
        self.moderation = moderation
        self.pool = pool

    async def submit(self, parameters: GenerationParameters, user_id: UUID) -> GenerationRequest:
        """Create a processing request with its ink reserved and queue the job.

        Args:
            parameters: Parameters as submitted by the user
            user_id: Submitting user

        Returns:
            The created request (status processing)

        Raises:
            MaintenanceError: API is in maintenance mode
            InvalidParametersError: Unknown provider/model or unsupported size/count
            ModerationRejectedError: Prompt flagged by moderation
            UserNotFoundError: User does not exist
            InsufficientInkError: Spendable ink below the reservation
        """
        async with await self.uow_factory() as uow:
            api_status = await uow.system_state.get_api_status()
        if api_status is ApiStatus.MAINTENANCE:
            raise MaintenanceError("Generation is temporarily unavailable for maintenance.")

        sanitized = self.registry.validate(parameters)

        if await self.moderation.is_flagged(sanitized.prompt):
            raise ModerationRejectedError("Prompt violates the content policy.")

        cost = calculate_ink_cost(sanitized)

        async with await self.uow_factory() as uow:
            user = await uow.users.get_by_id(user_id)
            if user is None:
                raise UserNotFoundError("User not found.")

            if not await uow.users.reserve_ink(user_id, cost):
                raise InsufficientInkError(
                    f"Not enough ink: {cost} required, {max(user.spendable_ink, 0)} available."
                )

            request = await uow.generation_requests.add(
                GenerationRequest(
                    user_id=user_id,
                    status=GenerationRequestStatus.PROCESSING,
                    parameters=sanitized.model_dump(),
                    ink_reserved=cost,
                )
            )

        logger.info(
            "generation.submitted",
            request_id=str(request.id),
            user_id=str(user_id),
            provider=sanitized.provider,
            model=sanitized.model,
            count=sanitized.count,
            ink_reserved=cost,
        )

        if not self.pool.submit(GenerationJob.from_request(request)):
            logger.warning("generation.enqueue_failed", request_id=str(request.id))

        return request
