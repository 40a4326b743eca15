"""
FastAPI Application

Main entry point for the Posting Queue API.
Handles application lifecycle, error mapping and router mounting.
"""
import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from posting_queue import __version__
from posting_queue.config import settings
from posting_queue.exceptions import (
    ConnectionNotFound,
    InvalidStateTransition,
    ItemNotClaimable,
    QueueItemNotFound,
)
from posting_queue.posters import build_default_dispatcher
from posting_queue.repositories import (
    InMemoryConnectionStore,
    MongoConnectionRepository,
    db_manager,
)
from posting_queue.services import IntegrationService, PostingQueueService, PostingSweeper
from posting_queue.store import InMemoryPostingStore, MongoPostingStore
from posting_queue.utils.metrics import metrics
from posting_queue.utils.observability import configure_logging
from posting_queue.api.routes import health_router, integrations_router, metrics_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle: startup and shutdown events.

    Startup:
    - Connect to MongoDB and create indexes (mongodb backend)
    - Wire store, connection registry, dispatcher and services
    - Start background posting sweeper

    Shutdown:
    - Stop the sweeper gracefully
    - Disconnect from MongoDB
    """
    configure_logging()
    logger.info("Starting Posting Queue API server...")

    if settings.storage_backend == "mongodb":
        await db_manager.connect()
        await db_manager.create_indexes()
        store = MongoPostingStore(
            db_manager.database,
            backoff_unit_seconds=settings.posting_backoff_unit_seconds
        )
        connections = MongoConnectionRepository(db_manager.database)
    else:
        logger.warning("⚠️ Using in-memory storage; queue state is lost on restart")
        store = InMemoryPostingStore(backoff_unit_seconds=settings.posting_backoff_unit_seconds)
        connections = InMemoryConnectionStore()

    posting_service = PostingQueueService(store, connections, build_default_dispatcher())
    integration_service = IntegrationService(connections)

    sweeper = PostingSweeper(
        service=posting_service,
        connections=connections,
        batch_size=settings.sweep_batch_size,
        max_concurrent=settings.sweep_max_concurrent,
        poll_interval=settings.sweep_interval_seconds,
        stale_after_seconds=settings.stale_processing_seconds
    )

    # Store in app state for access in routes
    app.state.storage_backend = settings.storage_backend
    app.state.posting_service = posting_service
    app.state.integration_service = integration_service
    app.state.sweeper = sweeper

    sweeper_task = None
    if settings.sweep_enabled:
        sweeper_task = asyncio.create_task(sweeper.start())
    else:
        logger.info("Posting sweeper disabled")

    logger.info("API server ready")

    yield

    # Shutdown
    logger.info("Shutting down API server...")

    await sweeper.stop()
    if sweeper_task is not None and not sweeper_task.done():
        try:
            await asyncio.wait_for(sweeper_task, timeout=30.0)
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for sweeper, cancelling")
            sweeper_task.cancel()

    if settings.storage_backend == "mongodb":
        await db_manager.disconnect()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Posting Queue API",
    description="Idempotent outbound posting of finance documents to accounting integrations",
    version=__version__,
    lifespan=lifespan
)


@app.middleware("http")
async def count_requests(request: Request, call_next):
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    metrics.requests_total.inc(endpoint=endpoint, status=str(response.status_code))
    return response


@app.exception_handler(QueueItemNotFound)
@app.exception_handler(ConnectionNotFound)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidStateTransition)
@app.exception_handler(ItemNotClaimable)
async def conflict_handler(request: Request, exc: Exception):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# Mount routers
app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(integrations_router)
