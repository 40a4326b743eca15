"""
Posting Queue Store Interface

Durable record of posting requests and their lifecycle. Implementations
own two atomicity guarantees:

- insert is a single insert-or-fetch on (tenant_id, integration_id,
  idempotency_key), so concurrent enqueues of one document yield one row
- mark_processing is a compare-and-swap from a claimable, due status to
  PROCESSING, so exactly one concurrent claimer wins
"""

import datetime as dt
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from posting_queue.models.base import utcnow
from posting_queue.models.posting import PostingQueueItem, PostingStatus

Clock = Callable[[], dt.datetime]


class PostingQueueStore(ABC):
    """
    Abstract posting queue store.

    Implementations must provide:
    - Insert: Idempotent insert-or-fetch
    - Lookups: by id, due items per integration, paginated per tenant
    - Transitions: claim, success, failure with retry scheduling, reset

    Stores signal "not found" by returning None. Transitions that the
    current status does not allow raise ItemNotClaimable (claims) or
    InvalidStateTransition (everything else).
    """

    def __init__(self, backoff_unit_seconds: int = 300, clock: Clock = utcnow):
        """
        Args:
            backoff_unit_seconds: Retry delay per attempt already made
            clock: Source of "now"; injectable for tests
        """
        self.backoff_unit = dt.timedelta(seconds=backoff_unit_seconds)
        self.clock = clock

    def compute_next_retry_at(self, now: dt.datetime, attempts: int) -> dt.datetime:
        """Linear backoff: one unit per attempt made so far."""
        return now + self.backoff_unit * attempts

    @staticmethod
    def status_after_failure(attempts: int, max_attempts: int) -> PostingStatus:
        if attempts >= max_attempts:
            return PostingStatus.FAILED
        return PostingStatus.RETRYING

    @abstractmethod
    async def insert(self, item: PostingQueueItem) -> PostingQueueItem:
        """
        Insert a new row, or return the existing row for the same document.

        An existing row only gets its `updated_at` refreshed; its payload
        and status are left untouched.
        """
        pass

    @abstractmethod
    async def find_by_id(self, item_id: str) -> Optional[PostingQueueItem]:
        """Point lookup; None when absent."""
        pass

    @abstractmethod
    async def find_due(self, integration_id: str, limit: int = 50) -> List[PostingQueueItem]:
        """
        PENDING/RETRYING rows of one integration whose next_retry_at is
        unset or has passed, oldest created_at first.
        """
        pass

    @abstractmethod
    async def find_by_tenant(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[PostingQueueItem]:
        """Rows of one tenant, newest created_at first."""
        pass

    @abstractmethod
    async def count_by_tenant(self, tenant_id: str, status: Optional[str] = None) -> int:
        """Total matching rows for pagination."""
        pass

    @abstractmethod
    async def count_by_status(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        """Row count for every status, optionally for one tenant."""
        pass

    @abstractmethod
    async def find_stale_processing(self, older_than: dt.datetime, limit: int = 50) -> List[PostingQueueItem]:
        """PROCESSING rows whose claimed_at is before `older_than`, oldest claim first."""
        pass

    @abstractmethod
    async def mark_processing(self, item_id: str) -> Optional[PostingQueueItem]:
        """
        Claim a row: PENDING/RETRYING (and due) -> PROCESSING, attempts += 1,
        claimed_at = now.

        The returned `attempts` identifies the claim; pass it back to
        mark_success / mark_failed so a superseded claim cannot record
        an outcome.

        Returns:
            The claimed row, or None if it does not exist

        Raises:
            ItemNotClaimable: Row exists but another caller holds it, it is
                terminal, or its retry time has not come yet
        """
        pass

    @abstractmethod
    async def mark_success(
        self,
        item_id: str,
        external_ref: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> Optional[PostingQueueItem]:
        """
        PROCESSING -> SUCCESS, recording external_ref and processed_at.

        With `attempt`, the row must still hold that claim; otherwise
        InvalidStateTransition is raised.
        """
        pass

    @abstractmethod
    async def mark_failed(
        self,
        item_id: str,
        error: str,
        attempt: Optional[int] = None
    ) -> Optional[PostingQueueItem]:
        """
        PROCESSING -> RETRYING or FAILED.

        FAILED when attempts >= max_attempts, otherwise RETRYING with
        next_retry_at = now + backoff_unit * attempts. `attempt` guards
        the claim as in mark_success.
        """
        pass

    @staticmethod
    def holds_claim(attempts: int, attempt: Optional[int]) -> bool:
        return attempt is None or attempts == attempt

    @abstractmethod
    async def reset(self, item_id: str) -> Optional[PostingQueueItem]:
        """
        Manual retry: RETRYING/FAILED -> PENDING with next_retry_at cleared.

        attempts and last_error are kept as history.
        """
        pass
