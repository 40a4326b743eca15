"""Domain models for connections and posting queue items."""
from posting_queue.models.base import MongoBaseModel, utcnow
from posting_queue.models.connection import ConnectionStatus, IntegrationConnection, IntegrationType
from posting_queue.models.posting import (
    CLAIMABLE_STATUSES,
    RESETTABLE_STATUSES,
    TERMINAL_STATUSES,
    DeliveryResult,
    DocumentType,
    PageMeta,
    PaginatedResult,
    PostingQueueItem,
    PostingStatus,
    PostResult,
    make_idempotency_key,
)

__all__ = [
    "MongoBaseModel",
    "utcnow",
    "ConnectionStatus",
    "IntegrationConnection",
    "IntegrationType",
    "CLAIMABLE_STATUSES",
    "RESETTABLE_STATUSES",
    "TERMINAL_STATUSES",
    "DeliveryResult",
    "DocumentType",
    "PageMeta",
    "PaginatedResult",
    "PostingQueueItem",
    "PostingStatus",
    "PostResult",
    "make_idempotency_key",
]
