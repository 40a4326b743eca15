"""
Posting Queue Service

Business-facing state machine and idempotency policy over the store:

    (none) --enqueue--> PENDING --claim--> PROCESSING
    PROCESSING --success--> SUCCESS                        [terminal]
    PROCESSING --failure, attempts < max--> RETRYING
    PROCESSING --failure, attempts >= max--> FAILED        [terminal]
    RETRYING --due & claim--> PROCESSING
    RETRYING / FAILED --manual retry--> PENDING

SUCCESS is never reset, so a document the ledger has accepted cannot be
posted twice.
"""

import datetime as dt
from typing import Any, Dict, List, Optional

from posting_queue.config import get_settings
from posting_queue.exceptions import (
    InvalidStateTransition,
    ItemNotClaimable,
    QueueItemNotFound,
)
from posting_queue.models.connection import ConnectionStatus
from posting_queue.models.posting import (
    DeliveryResult,
    PaginatedResult,
    PostingQueueItem,
    PostingStatus,
    PostResult,
    make_idempotency_key,
)
from posting_queue.posters.dispatcher import PosterDispatcher
from posting_queue.repositories.connections import ConnectionStore
from posting_queue.store.base import PostingQueueStore
from posting_queue.utils.metrics import metrics
from posting_queue.utils.observability import log_posting_event, logger


class PostingQueueService:
    """
    Orchestrates enqueue, claim, delivery and outcome recording.

    Attributes:
        store: Posting queue persistence
        connections: Connection registry (read side)
        dispatcher: Poster lookup by integration type
        max_attempts: Attempt ceiling stamped on new rows
    """

    def __init__(
        self,
        store: PostingQueueStore,
        connections: ConnectionStore,
        dispatcher: PosterDispatcher,
        max_attempts: Optional[int] = None,
        page_size_default: Optional[int] = None,
        page_size_max: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.connections = connections
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts or settings.posting_max_attempts
        self.page_size_default = page_size_default or settings.queue_page_size_default
        self.page_size_max = page_size_max or settings.queue_page_size_max

    # ============================================
    # QUEUE OPERATIONS
    # ============================================

    async def enqueue(
        self,
        tenant_id: str,
        integration_id: str,
        doc_type: str,
        doc_id: str,
        payload: Dict[str, Any]
    ) -> PostingQueueItem:
        """
        Queue a document for delivery. Idempotent per document.

        Repeated calls for the same (tenant, integration, doc_type, doc_id)
        return the existing row; its payload is not replaced.
        """
        item = await self.store.insert(PostingQueueItem(
            tenant_id=tenant_id,
            integration_id=integration_id,
            doc_type=doc_type,
            doc_id=doc_id,
            idempotency_key=make_idempotency_key(doc_type, doc_id),
            payload=payload,
            max_attempts=self.max_attempts,
        ))

        metrics.enqueued_total.inc()
        log_posting_event(
            "enqueued",
            queue_item_id=item.id,
            tenant_id=tenant_id,
            integration_id=integration_id,
            idempotency_key=item.idempotency_key,
            status=item.status,
        )
        return item

    async def get_queue_item(self, item_id: str) -> PostingQueueItem:
        item = await self.store.find_by_id(item_id)
        if not item:
            raise QueueItemNotFound(item_id)
        return item

    async def list_queue(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> PaginatedResult[PostingQueueItem]:
        """
        Paginated, newest-first view of a tenant's queue.

        `page` is 1-based; both values are clamped to sane bounds.

        Raises:
            ValueError: If `status` is not a posting status
        """
        if status is not None:
            status = PostingStatus(status).value

        page = max(1, page or 1)
        limit = min(self.page_size_max, max(1, limit or self.page_size_default))
        offset = (page - 1) * limit

        data = await self.store.find_by_tenant(tenant_id, status, limit, offset)
        total = await self.store.count_by_tenant(tenant_id, status)
        return PaginatedResult[PostingQueueItem].build(data, total, page, limit)

    async def get_due_items(self, integration_id: str, limit: int = 50) -> List[PostingQueueItem]:
        return await self.store.find_due(integration_id, limit)

    async def process_item(self, item_id: str) -> PostingQueueItem:
        """
        Claim an item for delivery (attempts += 1).

        Raises:
            QueueItemNotFound: Item does not exist
            ItemNotClaimable: Item is held by another caller, terminal, or not yet due
        """
        item = await self.store.mark_processing(item_id)
        if not item:
            raise QueueItemNotFound(item_id)

        log_posting_event(
            "claimed",
            queue_item_id=item.id,
            tenant_id=item.tenant_id,
            integration_id=item.integration_id,
            attempts=item.attempts,
            max_attempts=item.max_attempts,
        )
        return item

    async def mark_success(
        self,
        item_id: str,
        external_ref: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> PostingQueueItem:
        item = await self.store.mark_success(item_id, external_ref, attempt)
        if not item:
            raise QueueItemNotFound(item_id)

        log_posting_event(
            "succeeded",
            queue_item_id=item.id,
            tenant_id=item.tenant_id,
            integration_id=item.integration_id,
            external_ref=external_ref,
            attempts=item.attempts,
        )
        return item

    async def mark_failed(self, item_id: str, error: str, attempt: Optional[int] = None) -> PostingQueueItem:
        """
        Record a failed attempt. With `attempt`, only the claim that made
        that attempt may record it.

        Raises:
            QueueItemNotFound: Item does not exist
            InvalidStateTransition: Item is not PROCESSING, or is held by a later claim
        """
        item = await self.store.mark_failed(item_id, error, attempt)
        if not item:
            raise QueueItemNotFound(item_id)

        log_posting_event(
            "failed",
            queue_item_id=item.id,
            tenant_id=item.tenant_id,
            integration_id=item.integration_id,
            level="ERROR" if item.status == PostingStatus.FAILED else "WARNING",
            status=item.status,
            attempts=item.attempts,
            max_attempts=item.max_attempts,
            next_retry_at=item.next_retry_at.isoformat() if item.next_retry_at else None,
            error=error,
        )
        return item

    async def retry(self, item_id: str) -> PostingQueueItem:
        """
        Operator retry of a RETRYING or FAILED item.

        Raises:
            QueueItemNotFound: Item does not exist
            InvalidStateTransition: Item is SUCCESS or currently PROCESSING
        """
        item = await self.store.reset(item_id)
        if not item:
            raise QueueItemNotFound(item_id)

        log_posting_event(
            "reset",
            queue_item_id=item.id,
            tenant_id=item.tenant_id,
            integration_id=item.integration_id,
            attempts=item.attempts,
            last_error=item.last_error,
        )
        return item

    # ============================================
    # DELIVERY
    # ============================================

    async def post_document(
        self,
        integration_id: str,
        doc_type: str,
        payload: Dict[str, Any]
    ) -> PostResult:
        """
        Deliver a document through the integration's poster.

        Missing or non-CONNECTED integrations are failure results, not errors.
        """
        connection = await self.connections.find_by_id(integration_id)
        if not connection:
            return PostResult.failure("Integration not found")

        if connection.status != ConnectionStatus.CONNECTED:
            return PostResult.failure("Integration not connected")

        return await self.dispatcher.post(connection, doc_type, payload)

    async def deliver(self, item_id: str) -> DeliveryResult:
        """
        Run the processing protocol for one queued item.

        claim -> post -> mark success / mark failed. When the claim is not
        granted the poster is not invoked and the result is `skipped`.
        The outcome is recorded against the claim's attempt number, so a
        claim that was released as stale in the meantime records nothing
        and is reported as `skipped` too.

        Raises:
            QueueItemNotFound: Item does not exist
        """
        try:
            item = await self.process_item(item_id)
        except ItemNotClaimable as e:
            metrics.claim_conflicts_total.inc()
            metrics.deliveries_total.inc(outcome="skipped")
            logger.bind(queue_item_id=item_id, status=e.status).debug("Delivery skipped, item not claimable")
            return DeliveryResult(item=await self.get_queue_item(item_id), skipped=True)

        result = await self.post_document(item.integration_id, item.doc_type, item.payload)

        try:
            if result.success:
                recorded = await self.mark_success(item.id, result.external_ref, attempt=item.attempts)
            else:
                recorded = await self.mark_failed(item.id, result.error or "Unknown error", attempt=item.attempts)
        except InvalidStateTransition as e:
            # Claim was released as stale and taken again while this attempt was posting
            metrics.deliveries_total.inc(outcome="superseded")
            logger.bind(
                queue_item_id=item.id,
                attempts=item.attempts,
                status=e.status,
                success=result.success,
            ).warning("Delivery outcome dropped, claim no longer held")
            return DeliveryResult(item=await self.get_queue_item(item.id), result=result, skipped=True)

        metrics.deliveries_total.inc(outcome=str(recorded.status).lower())
        return DeliveryResult(item=recorded, result=result)

    async def submit_document(
        self,
        tenant_id: str,
        integration_id: str,
        doc_type: str,
        doc_id: str,
        payload: Dict[str, Any]
    ) -> DeliveryResult:
        """Enqueue a document and attempt delivery immediately."""
        item = await self.enqueue(tenant_id, integration_id, doc_type, doc_id, payload)
        return await self.deliver(item.id)

    # ============================================
    # OPERATIONS
    # ============================================

    async def release_stale_claims(self, older_than_seconds: int, limit: int = 50) -> int:
        """
        Fail PROCESSING rows whose claim is older than the threshold.

        They go through the normal failure path, so they become RETRYING
        or FAILED by their attempt ceiling.

        Returns:
            Number of rows released
        """
        cutoff = self.store.clock() - dt.timedelta(seconds=older_than_seconds)
        released = 0

        for item in await self.store.find_stale_processing(cutoff, limit):
            try:
                await self.mark_failed(item.id, "Processing timed out", attempt=item.attempts)
            except (InvalidStateTransition, QueueItemNotFound):
                # Finished between the scan and the update
                continue
            released += 1

        if released:
            metrics.stale_claims_released.inc(released)
            logger.warning(f"Released {released} stale posting claims")
        return released

    async def queue_depth(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        return await self.store.count_by_status(tenant_id)
