"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from mist.api.routes import generation_requests, webhooks
from mist.core import timezone  # noqa: F401
from mist.core.config import Settings, configure_logging
from mist.core.database import create_engine, create_session_factory
from mist.services.exceptions import SubmissionError, TransientError
from mist.services.generation.pipeline import GenerationPipeline
from mist.services.generation.reconciler import CompletionReconciler
from mist.services.generation.registry import build_registry
from mist.services.generation.supervisor import GenerationSupervisor
from mist.services.moderation import ModerationClient
from mist.services.notifications.fcm_client import FcmClient
from mist.services.retry import RetryPolicy
from mist.services.storage.backblaze_client import BackblazeClient
from mist.uow import create_uow_factory
from mist.workers.generation_worker import GenerationWorkerPool
from mist.workers.janitor import run_janitor

logger = structlog.get_logger()

RESTART_DELAY = 1  # Fixed 1 second delay between restarts


class ResilientWorker:
    """Runs a long-lived coroutine and restarts it after a crash.

    Restarts stop once ``shutdown_event`` is set; ``stop`` cancels whichever
    task is currently running.
    """

    def __init__(
        self,
        coro_factory: Callable[[], Awaitable[None]],
        worker_name: str,
        shutdown_event: asyncio.Event,
    ):
        self.coro_factory = coro_factory
        self.worker_name = worker_name
        self.shutdown_event = shutdown_event
        self.task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None

    def start(self) -> "ResilientWorker":
        self.task = asyncio.create_task(self.coro_factory(), name=self.worker_name)  # type: ignore[arg-type]
        self.task.add_done_callback(self._on_done)
        return self

    def _on_done(self, task: asyncio.Task) -> None:
        if self.shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=self.worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=self.worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=self.worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=self.worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)
            if self.shutdown_event.is_set():
                return
            logger.info("worker.restarting", worker=self.worker_name)
            self.start()

        self._restart_task = asyncio.create_task(restart_worker())

    async def stop(self) -> None:
        for task in (self._restart_task, self.task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in (self._restart_task, self.task) if t is not None),
            return_exceptions=True,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build shared clients and services, start workers
    - Shutdown: Stop workers, close HTTP client and database pool
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    engine = create_engine(settings.database_url, settings.db_pool_size)
    session_factory = create_session_factory(engine)
    uow_factory = create_uow_factory(session_factory)

    http = httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    provider_retry = RetryPolicy(
        attempts=settings.provider_retry_attempts,
        interval=settings.provider_retry_interval_seconds,
    )
    finalize_retry = RetryPolicy(
        attempts=settings.finalize_retry_attempts,
        interval=settings.finalize_retry_interval_seconds,
        retry_on=(SQLAlchemyError, TransientError),
    )

    storage = BackblazeClient(
        http,
        key_id=settings.backblaze_key_id,
        application_key=settings.backblaze_application_key,
        bucket_id=settings.backblaze_bucket_id,
    )
    notifier = FcmClient(http, settings.fcm_server_key)
    moderation = ModerationClient(http, settings.openai_api_key, settings.openai_api_url)
    registry = build_registry(settings, http, provider_retry)

    reconciler = CompletionReconciler(uow_factory, storage, notifier, finalize_retry)
    pipeline = GenerationPipeline(
        registry, storage, reconciler, provider_retry, settings.webhook_callback_url
    )
    worker_pool = GenerationWorkerPool(
        pipeline, workers=settings.generation_workers, queue_size=settings.generation_queue_size
    )
    supervisor = GenerationSupervisor(uow_factory, registry, moderation, worker_pool)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.registry = registry
    app.state.worker_pool = worker_pool
    app.state.supervisor = supervisor

    shutdown_event = asyncio.Event()

    workers = [
        ResilientWorker(worker_pool.run, "generation_pool", shutdown_event).start(),
        ResilientWorker(
            lambda: run_janitor(
                uow_factory,
                reconciler,
                interval=settings.janitor_interval_seconds,
                initial_delay=settings.janitor_initial_delay_seconds,
                stale_after=settings.janitor_stale_after_seconds,
            ),
            "janitor",
            shutdown_event,
        ).start(),
    ]

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        providers=registry.providers,
        generation_workers=settings.generation_workers,
    )

    yield

    logger.info("application.shutdown", queued_jobs=worker_pool.queue.qsize())
    shutdown_event.set()

    await asyncio.gather(*(worker.stop() for worker in workers))

    await http.aclose()
    await engine.dispose()


async def handle_submission_error(request: Request, exc: SubmissionError) -> JSONResponse:
    logger.info(
        "generation.rejected",
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment when omitted)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Mist Backend API",
        description="Image generation requests, ink ledger and provider callbacks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SubmissionError, handle_submission_error)  # type: ignore[arg-type]

    app.include_router(generation_requests.router)
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
