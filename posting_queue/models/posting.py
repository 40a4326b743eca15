import math
from enum import StrEnum
from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field
from posting_queue.models.base import MongoBaseModel, UTCDateTime

T = TypeVar("T")


class PostingStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    RETRYING = "RETRYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


CLAIMABLE_STATUSES = (PostingStatus.PENDING, PostingStatus.RETRYING)
TERMINAL_STATUSES = (PostingStatus.SUCCESS, PostingStatus.FAILED)
RESETTABLE_STATUSES = (PostingStatus.PENDING, PostingStatus.RETRYING, PostingStatus.FAILED)


def make_idempotency_key(doc_type: str, doc_id: str) -> str:
    """Deterministic key identifying one source document."""
    return f"{doc_type}:{doc_id}"


class PostingQueueItem(MongoBaseModel):
    """
    One request to deliver a finance document to one integration.

    Unique on (tenant_id, integration_id, idempotency_key).
    """
    tenant_id: str
    integration_id: str
    doc_type: str
    doc_id: str
    idempotency_key: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    status: PostingStatus = PostingStatus.PENDING.value
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)

    last_error: Optional[str] = None
    external_ref: Optional[str] = None
    next_retry_at: Optional[UTCDateTime] = None
    processed_at: Optional[UTCDateTime] = None
    # Set only by a claim; re-enqueues refresh updated_at but never this
    claimed_at: Optional[UTCDateTime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class PostResult(BaseModel):
    """Normalized outcome of a poster call."""
    success: bool
    external_ref: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, external_ref: Optional[str] = None) -> "PostResult":
        return cls(success=True, external_ref=external_ref)

    @classmethod
    def failure(cls, error: str) -> "PostResult":
        return cls(success=False, error=error)


class DeliveryResult(BaseModel):
    """
    Outcome of running the processing protocol for one queue item.

    `skipped` is True when the claim was not granted (already claimed,
    terminal, or not yet due); `result` is None in that case. It is also
    True, with `result` set, when the claim was released as stale and
    taken by another worker before this attempt's outcome was recorded.
    """
    item: PostingQueueItem
    result: Optional[PostResult] = None
    skipped: bool = False


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResult(BaseModel, Generic[T]):
    data: List[T]
    meta: PageMeta

    @classmethod
    def build(cls, data: List[T], total: int, page: int, limit: int) -> "PaginatedResult[T]":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            data=data,
            meta=PageMeta(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
        )


class DocumentType(StrEnum):
    """Finance documents the bundled posters know how to deliver."""
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
