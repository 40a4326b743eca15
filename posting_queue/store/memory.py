"""
In-Memory Posting Queue Store

Dict-backed store for tests and single-process deployments.
Every operation runs under one asyncio lock, which gives the same
insert-or-fetch and claim atomicity the Mongo store gets from
conditional updates. Data is lost on restart.
"""

import asyncio
import datetime as dt
import uuid
from typing import Dict, List, Optional

from posting_queue.exceptions import InvalidStateTransition, ItemNotClaimable
from posting_queue.models.posting import (
    CLAIMABLE_STATUSES,
    RESETTABLE_STATUSES,
    PostingQueueItem,
    PostingStatus,
)
from posting_queue.store.base import Clock, PostingQueueStore
from posting_queue.models.base import utcnow


class InMemoryPostingStore(PostingQueueStore):
    """
    In-memory posting queue store.

    Suitable for:
    - Testing
    - Single-instance deployments

    Not suitable for:
    - Multi-instance deployments (claims are only exclusive per process)
    - Long-term persistence
    """

    def __init__(self, backoff_unit_seconds: int = 300, clock: Clock = utcnow):
        super().__init__(backoff_unit_seconds=backoff_unit_seconds, clock=clock)
        self._items: dict[str, PostingQueueItem] = {}
        self._by_key: dict[tuple[str, str, str], str] = {}
        self._lock = asyncio.Lock()

    async def insert(self, item: PostingQueueItem) -> PostingQueueItem:
        key = (item.tenant_id, item.integration_id, item.idempotency_key)
        async with self._lock:
            now = self.clock()
            existing_id = self._by_key.get(key)
            if existing_id is not None:
                existing = self._items[existing_id]
                existing.updated_at = now
                return existing.model_copy(deep=True)

            stored = item.model_copy(deep=True, update={
                "id": str(uuid.uuid4()),
                "created_at": now,
                "updated_at": now,
            })
            self._items[stored.id] = stored
            self._by_key[key] = stored.id
            return stored.model_copy(deep=True)

    async def find_by_id(self, item_id: str) -> Optional[PostingQueueItem]:
        async with self._lock:
            item = self._items.get(item_id)
            return item.model_copy(deep=True) if item else None

    async def find_due(self, integration_id: str, limit: int = 50) -> List[PostingQueueItem]:
        async with self._lock:
            now = self.clock()
            due = [
                item for item in self._items.values()
                if item.integration_id == integration_id and self._is_due(item, now)
            ]
            due.sort(key=lambda item: item.created_at)
            return [item.model_copy(deep=True) for item in due[:limit]]

    async def find_by_tenant(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[PostingQueueItem]:
        async with self._lock:
            rows = self._tenant_rows(tenant_id, status)
            rows.sort(key=lambda item: item.created_at, reverse=True)
            return [item.model_copy(deep=True) for item in rows[offset:offset + limit]]

    async def count_by_tenant(self, tenant_id: str, status: Optional[str] = None) -> int:
        async with self._lock:
            return len(self._tenant_rows(tenant_id, status))

    async def count_by_status(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        async with self._lock:
            counts = {status.value: 0 for status in PostingStatus}
            for item in self._items.values():
                if tenant_id is None or item.tenant_id == tenant_id:
                    counts[item.status] += 1
            return counts

    async def find_stale_processing(self, older_than: dt.datetime, limit: int = 50) -> List[PostingQueueItem]:
        async with self._lock:
            stale = [
                item for item in self._items.values()
                if item.status == PostingStatus.PROCESSING
                and item.claimed_at is not None
                and item.claimed_at < older_than
            ]
            stale.sort(key=lambda item: item.claimed_at)
            return [item.model_copy(deep=True) for item in stale[:limit]]

    async def mark_processing(self, item_id: str) -> Optional[PostingQueueItem]:
        async with self._lock:
            item = self._items.get(item_id)
            if not item:
                return None

            now = self.clock()
            if not self._is_due(item, now):
                raise ItemNotClaimable(item_id, item.status)

            item.status = PostingStatus.PROCESSING
            item.attempts += 1
            item.claimed_at = now
            item.updated_at = now
            return item.model_copy(deep=True)

    async def mark_success(
        self,
        item_id: str,
        external_ref: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> Optional[PostingQueueItem]:
        async with self._lock:
            item = self._items.get(item_id)
            if not item:
                return None
            if item.status != PostingStatus.PROCESSING or not self.holds_claim(item.attempts, attempt):
                raise InvalidStateTransition(item_id, item.status, "mark success")

            now = self.clock()
            item.status = PostingStatus.SUCCESS
            item.external_ref = external_ref
            item.next_retry_at = None
            item.processed_at = now
            item.updated_at = now
            return item.model_copy(deep=True)

    async def mark_failed(
        self,
        item_id: str,
        error: str,
        attempt: Optional[int] = None
    ) -> Optional[PostingQueueItem]:
        async with self._lock:
            item = self._items.get(item_id)
            if not item:
                return None
            if item.status != PostingStatus.PROCESSING or not self.holds_claim(item.attempts, attempt):
                raise InvalidStateTransition(item_id, item.status, "mark failed")

            now = self.clock()
            item.last_error = error
            item.status = self.status_after_failure(item.attempts, item.max_attempts)
            item.next_retry_at = (
                self.compute_next_retry_at(now, item.attempts)
                if item.status == PostingStatus.RETRYING
                else None
            )
            item.updated_at = now
            return item.model_copy(deep=True)

    async def reset(self, item_id: str) -> Optional[PostingQueueItem]:
        async with self._lock:
            item = self._items.get(item_id)
            if not item:
                return None
            if item.status not in RESETTABLE_STATUSES:
                raise InvalidStateTransition(item_id, item.status, "retry")

            item.status = PostingStatus.PENDING
            item.next_retry_at = None
            item.updated_at = self.clock()
            return item.model_copy(deep=True)

    def _tenant_rows(self, tenant_id: str, status: Optional[str]) -> List[PostingQueueItem]:
        return [
            item for item in self._items.values()
            if item.tenant_id == tenant_id and (status is None or item.status == status)
        ]

    @staticmethod
    def _is_due(item: PostingQueueItem, now: dt.datetime) -> bool:
        return item.status in CLAIMABLE_STATUSES and (
            item.next_retry_at is None or item.next_retry_at <= now
        )
