"""
Metrics Endpoints

Prometheus-compatible metrics and queue statistics for observability.
"""
from fastapi import APIRouter, Request
from fastapi.responses import Response, JSONResponse
from loguru import logger

from posting_queue.services import PostingQueueService
from posting_queue.utils.metrics import metrics

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics(request: Request):
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text exposition format for scraping.
    Includes:
    - Request counts by endpoint and status
    - Queue rows by status
    - Enqueues, deliveries by outcome, claim conflicts
    - Poster call durations by integration type

    Content-Type: text/plain; version=0.0.4; charset=utf-8
    """
    try:
        # Refresh queue gauges from current state
        service: PostingQueueService = request.app.state.posting_service
        metrics.update_queue_depth(await service.queue_depth())

        return Response(
            content=metrics.export(),
            media_type="text/plain; version=0.0.4; charset=utf-8"
        )

    except Exception as e:
        logger.opt(exception=True).error(f"Failed to export metrics: {e}")
        return Response(
            content=f"# Error exporting metrics: {e}\n",
            media_type="text/plain",
            status_code=500
        )


@router.get("/metrics/queue")
async def queue_metrics(request: Request):
    """
    Get posting queue row counts by status.

    Returns:
        Counts for PENDING, PROCESSING, RETRYING, SUCCESS and FAILED
    """
    try:
        service: PostingQueueService = request.app.state.posting_service
        counts = await service.queue_depth()

        return {
            "status": "ok",
            "metrics": counts
        }

    except Exception as e:
        logger.opt(exception=True).error(f"Failed to get queue metrics: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error": str(e)
            }
        )
