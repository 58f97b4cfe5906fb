"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from pixorly.api.routes import generations, images, users, webhooks
from pixorly.core.config import Settings, configure_logging
from pixorly.core.database import setup_db_session
from pixorly.services.image_generation.gateway import ProviderGateway
from pixorly.services.image_generation.model_catalog import load_catalog
from pixorly.services.scheduler import DatabaseTaskScheduler
from pixorly.services.storage.s3_store import S3ArtifactStore
from pixorly.uow import create_uow_factory
from pixorly.workers.generation_worker import WorkerContext, run_generation_worker

logger = structlog.get_logger()

RESTART_DELAY_SECONDS = 1


def create_resilient_worker(
    coro_factory: Callable[[], Awaitable[None]], worker_name: str, shutdown_event: asyncio.Event
) -> asyncio.Task:
    """Create a worker with automatic restart on failure.

    Args:
        coro_factory: Zero-argument callable returning the worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY_SECONDS,
                exc_info=exc,
            )
        else:
            # Infinite loop workers should never return
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY_SECONDS,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY_SECONDS)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_factory())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_factory())
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build collaborators, start the generation worker
    - Shutdown: Stop the worker
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    catalog = load_catalog(settings.model_catalog_path)
    gateway = ProviderGateway.from_settings(settings, catalog)
    store = S3ArtifactStore.from_settings(settings)
    scheduler = DatabaseTaskScheduler()

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.model_catalog = catalog
    app.state.gateway = gateway
    app.state.artifact_store = store
    app.state.scheduler = scheduler

    worker_context = WorkerContext(
        uow_factory=uow_factory,
        gateway=gateway,
        store=store,
        scheduler=scheduler,
        settings=settings,
    )

    shutdown_event = asyncio.Event()
    worker_task = create_resilient_worker(
        lambda: run_generation_worker(worker_context), "generation", shutdown_event
    )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        model_catalog_version=catalog.version,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()
    worker_task.cancel()
    await asyncio.gather(worker_task, return_exceptions=True)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Pixorly API",
        description="AI image generation jobs, credits and storage",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generations.router)
    app.include_router(images.router)
    app.include_router(users.router)
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
