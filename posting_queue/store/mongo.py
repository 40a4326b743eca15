"""
MongoDB Posting Queue Store

Production store. Atomicity comes from single-document conditional
updates against the `posting_queue` collection:

- insert: find_one_and_update(upsert=True) with $setOnInsert, backed by
  the unique (tenant_id, integration_id, idempotency_key) index
- mark_processing: find_one_and_update whose filter carries the
  claimable-and-due precondition, with $inc on attempts
- mark_success / mark_failed / reset: the same compare-and-swap shape,
  with outcomes also guarded by the claim's attempt number
"""

import datetime as dt
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from posting_queue.exceptions import InvalidStateTransition, ItemNotClaimable
from posting_queue.models.base import utcnow
from posting_queue.models.posting import (
    CLAIMABLE_STATUSES,
    RESETTABLE_STATUSES,
    PostingQueueItem,
    PostingStatus,
)
from posting_queue.repositories.base import BaseRepository, to_bson_datetime, to_object_id
from posting_queue.repositories.connection import POSTING_QUEUE_COLLECTION
from posting_queue.store.base import Clock, PostingQueueStore
from posting_queue.utils.observability import logger

_IDEMPOTENCY_FIELDS = ("tenant_id", "integration_id", "idempotency_key")


def _status_values(statuses) -> List[str]:
    return [PostingStatus(status).value for status in statuses]


class MongoPostingStore(BaseRepository[PostingQueueItem], PostingQueueStore):
    """MongoDB-backed posting queue store."""

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        backoff_unit_seconds: int = 300,
        clock: Clock = utcnow
    ):
        BaseRepository.__init__(self, database, POSTING_QUEUE_COLLECTION, PostingQueueItem)
        PostingQueueStore.__init__(self, backoff_unit_seconds=backoff_unit_seconds, clock=clock)

    def _now(self) -> dt.datetime:
        return to_bson_datetime(self.clock())

    async def insert(self, item: PostingQueueItem) -> PostingQueueItem:
        now = self._now()
        key = {field: getattr(item, field) for field in _IDEMPOTENCY_FIELDS}

        body = self._to_document(item)
        for field in (*_IDEMPOTENCY_FIELDS, "updated_at"):
            body.pop(field, None)
        body["created_at"] = now

        try:
            doc = await self.collection.find_one_and_update(
                key,
                {"$setOnInsert": body, "$set": {"updated_at": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # A concurrent upsert for the same document won; use its row
            logger.bind(**key).debug("Concurrent enqueue resolved to existing row")
            doc = await self.collection.find_one_and_update(
                key,
                {"$set": {"updated_at": now}},
                return_document=ReturnDocument.AFTER
            )

        return self._to_model(doc)

    async def find_due(self, integration_id: str, limit: int = 50) -> List[PostingQueueItem]:
        return await self.find_many(
            {"integration_id": integration_id, **self._due_filter(self._now())},
            limit=limit,
            sort=[("created_at", 1)]  # Oldest first
        )

    async def find_by_tenant(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[PostingQueueItem]:
        return await self.find_many(
            self._tenant_filter(tenant_id, status),
            limit=limit,
            skip=offset,
            sort=[("created_at", -1)]  # Newest first
        )

    async def count_by_tenant(self, tenant_id: str, status: Optional[str] = None) -> int:
        return await self.count(self._tenant_filter(tenant_id, status))

    async def count_by_status(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        pipeline: List[Dict[str, Any]] = []
        if tenant_id is not None:
            pipeline.append({"$match": {"tenant_id": tenant_id}})
        pipeline.append({"$group": {"_id": "$status", "count": {"$sum": 1}}})

        results = await self.collection.aggregate(pipeline).to_list(length=None)

        counts = {status.value: 0 for status in PostingStatus}
        for result in results:
            if result["_id"] in counts:
                counts[result["_id"]] = result["count"]
            else:
                logger.warning(f"Unknown posting status in database: {result['_id']}")
        return counts

    async def find_stale_processing(self, older_than: dt.datetime, limit: int = 50) -> List[PostingQueueItem]:
        return await self.find_many(
            {
                "status": PostingStatus.PROCESSING.value,
                "claimed_at": {"$lt": to_bson_datetime(older_than)},
            },
            limit=limit,
            sort=[("claimed_at", 1)]
        )

    async def mark_processing(self, item_id: str) -> Optional[PostingQueueItem]:
        object_id = to_object_id(item_id)
        if object_id is None:
            return None

        now = self._now()
        doc = await self.collection.find_one_and_update(
            {"_id": object_id, **self._due_filter(now)},
            {
                "$set": {"status": PostingStatus.PROCESSING.value, "claimed_at": now, "updated_at": now},
                "$inc": {"attempts": 1},
            },
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            status = await self._current_status(object_id)
            if status is None:
                return None
            raise ItemNotClaimable(item_id, status)

        return self._to_model(doc)

    async def mark_success(
        self,
        item_id: str,
        external_ref: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> Optional[PostingQueueItem]:
        object_id = to_object_id(item_id)
        if object_id is None:
            return None

        claim_filter: Dict[str, Any] = {"_id": object_id, "status": PostingStatus.PROCESSING.value}
        if attempt is not None:
            claim_filter["attempts"] = attempt

        now = self._now()
        doc = await self.collection.find_one_and_update(
            claim_filter,
            {"$set": {
                "status": PostingStatus.SUCCESS.value,
                "external_ref": external_ref,
                "next_retry_at": None,
                "processed_at": now,
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            return await self._raise_transition(object_id, item_id, "mark success")

        return self._to_model(doc)

    async def mark_failed(
        self,
        item_id: str,
        error: str,
        attempt: Optional[int] = None
    ) -> Optional[PostingQueueItem]:
        object_id = to_object_id(item_id)
        if object_id is None:
            return None

        current = await self.collection.find_one({"_id": object_id})
        if current is None:
            return None
        if (
            current["status"] != PostingStatus.PROCESSING.value
            or not self.holds_claim(current["attempts"], attempt)
        ):
            raise InvalidStateTransition(item_id, current["status"], "mark failed")

        now = self._now()
        attempts = current["attempts"]
        status = self.status_after_failure(attempts, current["max_attempts"])
        next_retry_at = (
            self.compute_next_retry_at(now, attempts)
            if status == PostingStatus.RETRYING
            else None
        )

        # CAS on the observed attempt count so a concurrent transition is not overwritten
        doc = await self.collection.find_one_and_update(
            {"_id": object_id, "status": PostingStatus.PROCESSING.value, "attempts": attempts},
            {"$set": {
                "status": status.value,
                "last_error": error,
                "next_retry_at": next_retry_at,
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            return await self._raise_transition(object_id, item_id, "mark failed")

        return self._to_model(doc)

    async def reset(self, item_id: str) -> Optional[PostingQueueItem]:
        object_id = to_object_id(item_id)
        if object_id is None:
            return None

        doc = await self.collection.find_one_and_update(
            {"_id": object_id, "status": {"$in": _status_values(RESETTABLE_STATUSES)}},
            {"$set": {
                "status": PostingStatus.PENDING.value,
                "next_retry_at": None,
                "updated_at": self._now(),
            }},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            return await self._raise_transition(object_id, item_id, "retry")

        return self._to_model(doc)

    async def _current_status(self, object_id) -> Optional[str]:
        doc = await self.collection.find_one({"_id": object_id}, {"status": 1})
        return doc["status"] if doc else None

    async def _raise_transition(self, object_id, item_id: str, action: str) -> None:
        """Resolve a failed conditional update into not-found (None) or a rejected transition."""
        status = await self._current_status(object_id)
        if status is None:
            return None
        raise InvalidStateTransition(item_id, status, action)

    @staticmethod
    def _due_filter(now: dt.datetime) -> Dict[str, Any]:
        return {
            "status": {"$in": _status_values(CLAIMABLE_STATUSES)},
            "$or": [
                {"next_retry_at": None},
                {"next_retry_at": {"$lte": now}},
            ],
        }

    @staticmethod
    def _tenant_filter(tenant_id: str, status: Optional[str]) -> Dict[str, Any]:
        filter_dict: Dict[str, Any] = {"tenant_id": tenant_id}
        if status:
            filter_dict["status"] = status
        return filter_dict
