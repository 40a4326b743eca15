"""
Health and Readiness Endpoints

Kubernetes-compatible health probes for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

from posting_queue import __version__
from posting_queue.repositories import db_manager

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if service is running.
    Used by load balancers and monitoring systems.
    """
    return {
        "status": "healthy",
        "service": "posting-queue",
        "version": __version__
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness probe - checks if service can handle requests.

    Verifies:
    - Posting service is initialized
    - MongoDB connection is active (mongodb backend only)

    Returns 200 if ready, 503 if not ready.
    """
    try:
        if getattr(request.app.state, "posting_service", None) is None:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "reason": "Posting service not initialized"
                }
            )

        backend = getattr(request.app.state, "storage_backend", "mongodb")
        if backend == "mongodb":
            await db_manager.client.admin.command("ping")

        sweeper = getattr(request.app.state, "sweeper", None)
        return {
            "status": "ready",
            "storage": backend,
            "sweeper": "running" if sweeper is not None and sweeper.is_running else "stopped"
        }

    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": str(e)
            }
        )


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Posting Queue API",
        "version": __version__,
        "endpoints": {
            "health": "/health",
            "ready": "/ready",
            "metrics": "/metrics",
            "queue_metrics": "/metrics/queue",
            "integrations": "/integrations",
            "posting_queue": "/integrations/posting-queue"
        }
    }
