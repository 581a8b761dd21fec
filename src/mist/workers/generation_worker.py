"""Bounded worker pool for generation jobs.

Replaces one detached task per request with a fixed number of worker
coroutines draining a bounded queue. Submitting never blocks the HTTP
handler: when the queue is full the job is rejected, and since its request is
already persisted as processing with ink reserved, the janitor refunds it once
it goes stale.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import UUID

import structlog

from mist.services.generation.adapters.base import WebhookAdapter
from mist.services.generation.pipeline import GenerationJob, GenerationPipeline

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _WorkItem:
    kind: str
    request_id: UUID
    run: Callable[[], Awaitable[None]]


class GenerationWorkerPool:
    """Fixed-size pool of coroutines processing generation work in FIFO order."""

    def __init__(self, pipeline: GenerationPipeline, workers: int = 8, queue_size: int = 100):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.pipeline = pipeline
        self.workers = workers
        self.queue: asyncio.Queue[_WorkItem] = asyncio.Queue(maxsize=queue_size)

    def submit(self, job: GenerationJob) -> bool:
        """Queue a freshly submitted job for generation.

        Returns:
            True if queued, False if the queue is full
        """
        return self._enqueue(_WorkItem("generate", job.request_id, lambda: self.pipeline.run(job)))

    def submit_completion(self, job: GenerationJob, adapter: WebhookAdapter, output: list[dict[str, Any]]) -> bool:
        """Queue storage and finalization of results delivered by a webhook."""
        return self._enqueue(
            _WorkItem(
                "complete",
                job.request_id,
                lambda: self.pipeline.complete_from_webhook(job, adapter, output),
            )
        )

    def _enqueue(self, item: _WorkItem) -> bool:
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.error(
                "worker.queue_full",
                kind=item.kind,
                request_id=str(item.request_id),
                queue_size=self.queue.maxsize,
            )
            return False

        logger.debug("worker.enqueued", kind=item.kind, request_id=str(item.request_id), depth=self.queue.qsize())
        return True

    async def _worker(self, index: int) -> None:
        while True:
            item = await self.queue.get()
            try:
                await item.run()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Pipeline converts failures into terminal statuses; this is a last resort
                logger.error(
                    "worker.error",
                    worker=index,
                    kind=item.kind,
                    request_id=str(item.request_id),
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
            finally:
                self.queue.task_done()

    async def run(self) -> None:
        """Run all workers until cancelled."""
        logger.info("worker.started", workers=self.workers, queue_size=self.queue.maxsize)
        tasks = [asyncio.create_task(self._worker(i), name=f"generation-worker-{i}") for i in range(self.workers)]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("worker.stopped", pending=self.queue.qsize())
            raise

    async def drain(self) -> None:
        """Wait until every queued item has been processed."""
        await self.queue.join()
