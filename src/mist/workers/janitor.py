"""Janitor - periodic repair of requests stuck in processing.

A request whose background work was lost (process restart, crashed task, full
worker queue) stays processing with its ink reserved. The janitor finalizes
every such request older than the stale threshold as error, which refunds the
reservation. It goes through the same guarded transition as the pipeline, so a
job that finishes concurrently is never overridden.
"""

import asyncio
from datetime import timedelta

import structlog

from mist.core.timezone import utcnow
from mist.models.generation_request import GenerationRequestStatus
from mist.services.exceptions import ReconciliationError
from mist.services.generation.reconciler import CompletionReconciler
from mist.uow import UowFactory

logger = structlog.get_logger(__name__)


async def sweep_stale_requests(
    uow_factory: UowFactory,
    reconciler: CompletionReconciler,
    stale_after: float,
) -> int:
    """Finalize processing requests created more than ``stale_after`` seconds ago.

    Args:
        uow_factory: Factory for units of work
        reconciler: Reconciler used to finalize each stale request
        stale_after: Age threshold in seconds

    Returns:
        Number of requests this sweep finalized
    """
    cutoff = utcnow() - timedelta(seconds=stale_after)

    async with await uow_factory() as uow:
        stale = await uow.generation_requests.get_stale_processing(cutoff)

    finalized = 0
    for request in stale:
        try:
            if await reconciler.finalize_with_retry(request.id, GenerationRequestStatus.ERROR, []):
                finalized += 1
                logger.info(
                    "janitor.request_expired",
                    request_id=str(request.id),
                    user_id=str(request.user_id),
                    created_at=request.created_at.isoformat(),
                )
        except ReconciliationError:
            # Logged at critical; retried on the next sweep
            continue

    logger.info("janitor.sweep_completed", stale=len(stale), finalized=finalized)
    return finalized


async def run_janitor(
    uow_factory: UowFactory,
    reconciler: CompletionReconciler,
    interval: float = 600.0,
    initial_delay: float = 600.0,
    stale_after: float = 600.0,
) -> None:
    """Sweep every ``interval`` seconds after an ``initial_delay``.

    Handles CancelledError for graceful shutdown.
    """
    logger.info(
        "janitor.started",
        interval=interval,
        initial_delay=initial_delay,
        stale_after=stale_after,
    )

    try:
        await asyncio.sleep(initial_delay)
        while True:
            try:
                await sweep_stale_requests(uow_factory, reconciler, stale_after)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "janitor.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )

            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info("janitor.stopped")
        raise
