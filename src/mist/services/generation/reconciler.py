"""Completion reconciler - the single place a generation request is finalized.

``finalize`` runs in one transaction:

1. Guarded status transition (``WHERE status = 'processing'``). If another
   actor already finalized the request this is a no-op and nothing is settled.
2. Ledger settlement: ``pending -= reserved``, ``available -= actual`` where
   ``actual`` prices only the images that were produced (zero refunds fully).
3. Batch insert of the produced media.

After commit, a completed request triggers best-effort side effects (social
post when requested, push notification). Their failures are logged and never
touch the settlement.
"""

from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from mist.models.generation_request import GenerationRequest, GenerationRequestStatus
from mist.models.media import Media
from mist.models.post import Post
from mist.services.exceptions import ReconciliationError, TransientError
from mist.services.ink import calculate_ink_cost
from mist.services.notifications.fcm_client import FcmClient
from mist.services.retry import RetryPolicy
from mist.services.storage.backblaze_client import BackblazeClient
from mist.uow import UowFactory

logger = structlog.get_logger(__name__)

PUSH_TITLE = "Your images are ready"


class CompletionReconciler:
    """Finalizes generation requests and settles their ink reservation exactly once."""

    def __init__(
        self,
        uow_factory: UowFactory,
        storage: BackblazeClient,
        notifier: FcmClient,
        retry: Optional[RetryPolicy] = None,
    ):
        self.uow_factory = uow_factory
        self.storage = storage
        self.notifier = notifier
        self.retry = retry or RetryPolicy(
            attempts=6, interval=10.0, retry_on=(SQLAlchemyError, TransientError)
        )

    async def finalize(
        self,
        request_id: UUID,
        status: GenerationRequestStatus,
        media: list[Media],
    ) -> bool:
        """Move a processing request to a terminal status and settle its ink.

        A completed status without media is downgraded to error. Media passed
        with a non-completed status, or beyond the requested count, is discarded.

        Args:
            request_id: Request to finalize
            status: Terminal status (completed, error or canceled)
            media: Media produced for the request (not yet persisted)

        Returns:
            True if this call finalized the request, False if it was already final
        """
        if status is GenerationRequestStatus.COMPLETED and not media:
            status = GenerationRequestStatus.ERROR

        keep = media if status is GenerationRequestStatus.COMPLETED else []
        log = logger.bind(request_id=str(request_id), status=status.value)

        async with await self.uow_factory() as uow:
            request = await uow.generation_requests.get_by_id(request_id)
            if request is None:
                log.warning("reconcile.request_not_found")
                changed = False
                persisted: set[str] = set()
            else:
                keep = keep[: request.params.count]
                actual = calculate_ink_cost(request.params, len(keep))
                changed = await uow.generation_requests.transition_status(
                    request_id,
                    GenerationRequestStatus.PROCESSING,
                    status,
                    ink_charged=actual,
                )
                if changed:
                    await uow.users.settle_ink(request.user_id, request.ink_reserved, actual)
                    if keep:
                        await uow.media.add_all(keep)
                    persisted = {m.file_id for m in keep}
                else:
                    persisted = {m.file_id for m in await uow.media.get_by_request(request_id)}

        await self._discard([m for m in media if m.file_id not in persisted])

        if not changed:
            log.info("reconcile.already_finalized")
            return False

        log.info(
            "ledger.settled",
            user_id=str(request.user_id),
            ink_reserved=request.ink_reserved,
            ink_charged=actual,
            media_count=len(keep),
        )

        if status is GenerationRequestStatus.COMPLETED:
            await self._run_side_effects(request, keep)
        return True

    async def finalize_with_retry(
        self,
        request_id: UUID,
        status: GenerationRequestStatus,
        media: list[Media],
    ) -> bool:
        """``finalize`` under the reconciliation retry policy.

        Raises:
            ReconciliationError: Every attempt failed; the reservation stays pending
        """
        try:
            return await self.retry.run("reconcile.finalize", self.finalize, request_id, status, media)
        except (SQLAlchemyError, TransientError) as e:
            logger.critical(
                "reconcile.failed_permanently",
                request_id=str(request_id),
                status=status.value,
                attempts=self.retry.attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ReconciliationError(f"Could not finalize request {request_id}: {e}") from e

    async def _discard(self, media: list[Media]) -> None:
        """Delete uploaded blobs that will never be referenced (best effort)."""
        for item in media:
            try:
                await self.storage.delete(item.file_name, item.file_id)
            except Exception as e:
                logger.warning(
                    "reconcile.orphan_delete_failed",
                    file_id=item.file_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _run_side_effects(self, request: GenerationRequest, media: list[Media]) -> None:
        params = request.params
        log = logger.bind(request_id=str(request.id), user_id=str(request.user_id))

        if params.publish:
            try:
                async with await self.uow_factory() as uow:
                    post = await uow.posts.add(
                        Post(user_id=request.user_id, request_id=request.id, title=params.prompt)
                    )
                    await uow.media.attach_post([m.id for m in media], post.id)
                log.info("post.created", post_id=str(post.id))
            except Exception as e:
                log.warning("post.create_failed", error=str(e), error_type=type(e).__name__)

        try:
            await self.notifier.send_push(
                request.user_id,
                PUSH_TITLE,
                f"{len(media)} of {params.count} images generated.",
                f"mist://generate-media-requests/{request.id}",
            )
        except Exception as e:
            log.warning("push.failed", error=str(e), error_type=type(e).__name__)
