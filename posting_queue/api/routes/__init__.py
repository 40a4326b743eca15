"""
API Routes

Modular route definitions for the Posting Queue API.
"""
from posting_queue.api.routes.health import router as health_router
from posting_queue.api.routes.integrations import router as integrations_router
from posting_queue.api.routes.metrics import router as metrics_router

__all__ = [
    "health_router",
    "integrations_router",
    "metrics_router",
]
