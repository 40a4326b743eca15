"""Services package."""
from posting_queue.services.integration_service import IntegrationService
from posting_queue.services.posting_service import PostingQueueService
from posting_queue.services.sweeper import PostingSweeper, SweepStats

__all__ = [
    "IntegrationService",
    "PostingQueueService",
    "PostingSweeper",
    "SweepStats",
]
