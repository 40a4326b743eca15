"""
Behaviour shared by every PostingQueueStore backend.

Each test runs against the in-memory store and the MongoDB store
(backed by mongomock-motor).
"""

import asyncio
import datetime as dt

import pytest
from mongomock_motor import AsyncMongoMockClient

from posting_queue.exceptions import InvalidStateTransition, ItemNotClaimable
from posting_queue.models import PostingQueueItem, PostingStatus, make_idempotency_key
from posting_queue.repositories import ensure_indexes
from posting_queue.store import InMemoryPostingStore, MongoPostingStore


def make_item(doc_id="INV-1", integration_id="I1", tenant_id="T1", max_attempts=3, **payload):
    return PostingQueueItem(
        tenant_id=tenant_id,
        integration_id=integration_id,
        doc_type="INVOICE",
        doc_id=doc_id,
        idempotency_key=make_idempotency_key("INVOICE", doc_id),
        payload=payload or {"total": 100},
        max_attempts=max_attempts,
    )


@pytest.fixture(params=["memory", "mongo"])
async def queue_store(request, clock):
    if request.param == "memory":
        return InMemoryPostingStore(backoff_unit_seconds=300, clock=clock)

    database = AsyncMongoMockClient()["posting_queue_test"]
    await ensure_indexes(database)
    return MongoPostingStore(database, backoff_unit_seconds=300, clock=clock)


async def claimed(queue_store, **kwargs) -> PostingQueueItem:
    item = await queue_store.insert(make_item(**kwargs))
    return await queue_store.mark_processing(item.id)


class TestInsert:
    """Idempotent insert-or-fetch."""

    async def test_insert_creates_pending_row(self, queue_store, clock):
        item = await queue_store.insert(make_item())

        assert item.id is not None
        assert item.status == PostingStatus.PENDING
        assert item.attempts == 0
        assert item.max_attempts == 3
        assert item.next_retry_at is None
        assert item.created_at == clock.now

    async def test_repeat_insert_returns_existing_row(self, queue_store, clock):
        first = await queue_store.insert(make_item(total=100))
        clock.advance(60)

        second = await queue_store.insert(make_item(total=999))

        assert second.id == first.id
        assert second.payload == {"total": 100}
        assert second.created_at == first.created_at
        assert second.updated_at == clock.now

    async def test_repeat_insert_does_not_reset_terminal_row(self, queue_store):
        item = await claimed(queue_store)
        await queue_store.mark_success(item.id, "EXT-1")

        again = await queue_store.insert(make_item())

        assert again.id == item.id
        assert again.status == PostingStatus.SUCCESS
        assert again.external_ref == "EXT-1"

    async def test_same_document_different_integration_is_a_new_row(self, queue_store):
        first = await queue_store.insert(make_item(integration_id="I1"))
        second = await queue_store.insert(make_item(integration_id="I2"))

        assert first.id != second.id

    async def test_concurrent_inserts_yield_one_row(self, queue_store):
        items = await asyncio.gather(*(queue_store.insert(make_item()) for _ in range(5)))

        assert len({item.id for item in items}) == 1
        assert await queue_store.count_by_tenant("T1") == 1


class TestClaim:
    """mark_processing compare-and-swap."""

    async def test_claim_moves_to_processing_and_counts_attempt(self, queue_store):
        item = await claimed(queue_store)

        assert item.status == PostingStatus.PROCESSING
        assert item.attempts == 1

    async def test_second_claim_is_rejected(self, queue_store):
        item = await claimed(queue_store)

        with pytest.raises(ItemNotClaimable) as exc_info:
            await queue_store.mark_processing(item.id)

        assert exc_info.value.status == PostingStatus.PROCESSING

    async def test_concurrent_claims_have_one_winner(self, queue_store):
        item = await queue_store.insert(make_item())

        results = await asyncio.gather(
            *(queue_store.mark_processing(item.id) for _ in range(4)),
            return_exceptions=True
        )

        winners = [r for r in results if isinstance(r, PostingQueueItem)]
        losers = [r for r in results if isinstance(r, ItemNotClaimable)]
        assert len(winners) == 1
        assert len(losers) == 3
        assert (await queue_store.find_by_id(item.id)).attempts == 1

    async def test_claim_unknown_item_returns_none(self, queue_store):
        assert await queue_store.mark_processing("65f000000000000000000000") is None

    async def test_claim_before_retry_time_is_rejected(self, queue_store, clock):
        item = await claimed(queue_store)
        await queue_store.mark_failed(item.id, "timeout")

        with pytest.raises(ItemNotClaimable):
            await queue_store.mark_processing(item.id)

        clock.advance(300)
        again = await queue_store.mark_processing(item.id)
        assert again.attempts == 2


class TestOutcomes:
    """mark_success / mark_failed / reset."""

    async def test_mark_success_is_terminal(self, queue_store, clock):
        item = await claimed(queue_store)

        done = await queue_store.mark_success(item.id, "EXT-42")

        assert done.status == PostingStatus.SUCCESS
        assert done.external_ref == "EXT-42"
        assert done.processed_at == clock.now
        with pytest.raises(ItemNotClaimable):
            await queue_store.mark_processing(item.id)

    async def test_mark_success_requires_processing(self, queue_store):
        item = await queue_store.insert(make_item())

        with pytest.raises(InvalidStateTransition):
            await queue_store.mark_success(item.id, "EXT-1")

    async def test_failure_schedules_linear_backoff(self, queue_store, clock):
        item = await claimed(queue_store)

        failed = await queue_store.mark_failed(item.id, "HTTP 500")

        assert failed.status == PostingStatus.RETRYING
        assert failed.last_error == "HTTP 500"
        assert failed.next_retry_at == clock.now + dt.timedelta(seconds=300)

        clock.advance(300)
        await queue_store.mark_processing(item.id)
        failed = await queue_store.mark_failed(item.id, "HTTP 500")

        assert failed.attempts == 2
        assert failed.next_retry_at == clock.now + dt.timedelta(seconds=600)

    async def test_failure_at_attempt_ceiling_is_terminal(self, queue_store, clock):
        item = await claimed(queue_store, max_attempts=1)

        failed = await queue_store.mark_failed(item.id, "rejected")

        assert failed.status == PostingStatus.FAILED
        assert failed.next_retry_at is None
        clock.advance(86400)
        assert await queue_store.find_due("I1") == []

    async def test_mark_failed_requires_processing(self, queue_store):
        item = await queue_store.insert(make_item())

        with pytest.raises(InvalidStateTransition):
            await queue_store.mark_failed(item.id, "nope")

    async def test_reset_failed_row_keeps_attempts(self, queue_store):
        item = await claimed(queue_store, max_attempts=1)
        await queue_store.mark_failed(item.id, "rejected")

        reset = await queue_store.reset(item.id)

        assert reset.status == PostingStatus.PENDING
        assert reset.next_retry_at is None
        assert reset.attempts == 1
        assert reset.last_error == "rejected"

    async def test_reset_rejects_success_and_processing(self, queue_store):
        processing = await claimed(queue_store, doc_id="INV-1")
        with pytest.raises(InvalidStateTransition):
            await queue_store.reset(processing.id)

        await queue_store.mark_success(processing.id, "EXT-1")
        with pytest.raises(InvalidStateTransition):
            await queue_store.reset(processing.id)

    async def test_transitions_on_unknown_item_return_none(self, queue_store):
        missing = "65f000000000000000000000"

        assert await queue_store.mark_success(missing) is None
        assert await queue_store.mark_failed(missing, "x") is None
        assert await queue_store.reset(missing) is None
        assert await queue_store.find_by_id(missing) is None


class TestQueries:
    """find_due, tenant listing and counts."""

    async def test_find_due_is_oldest_first_and_per_integration(self, queue_store, clock):
        first = await queue_store.insert(make_item(doc_id="INV-1"))
        clock.advance(1)
        second = await queue_store.insert(make_item(doc_id="INV-2"))
        clock.advance(1)
        await queue_store.insert(make_item(doc_id="INV-3", integration_id="I2"))

        due = await queue_store.find_due("I1")

        assert [item.id for item in due] == [first.id, second.id]
        assert len(await queue_store.find_due("I1", limit=1)) == 1

    async def test_find_due_skips_processing_and_terminal_rows(self, queue_store):
        await claimed(queue_store, doc_id="INV-1")
        done = await claimed(queue_store, doc_id="INV-2")
        await queue_store.mark_success(done.id, "EXT")
        pending = await queue_store.insert(make_item(doc_id="INV-3"))

        due = await queue_store.find_due("I1")

        assert [item.id for item in due] == [pending.id]

    async def test_tenant_listing_is_newest_first_with_paging(self, queue_store, clock):
        ids = []
        for n in range(3):
            ids.append((await queue_store.insert(make_item(doc_id=f"INV-{n}"))).id)
            clock.advance(1)
        await queue_store.insert(make_item(doc_id="OTHER", tenant_id="T2"))

        page = await queue_store.find_by_tenant("T1", limit=2, offset=0)
        rest = await queue_store.find_by_tenant("T1", limit=2, offset=2)

        assert [item.id for item in page] == [ids[2], ids[1]]
        assert [item.id for item in rest] == [ids[0]]
        assert await queue_store.count_by_tenant("T1") == 3

    async def test_tenant_listing_filters_by_status(self, queue_store):
        await queue_store.insert(make_item(doc_id="INV-1"))
        await claimed(queue_store, doc_id="INV-2")

        processing = await queue_store.find_by_tenant("T1", status=PostingStatus.PROCESSING.value)

        assert [item.doc_id for item in processing] == ["INV-2"]
        assert await queue_store.count_by_tenant("T1", PostingStatus.PENDING.value) == 1

    async def test_count_by_status_reports_every_status(self, queue_store):
        await queue_store.insert(make_item(doc_id="INV-1"))
        await claimed(queue_store, doc_id="INV-2")
        await queue_store.insert(make_item(doc_id="INV-3", tenant_id="T2"))

        counts = await queue_store.count_by_status()
        tenant_counts = await queue_store.count_by_status("T1")

        assert counts == {"PENDING": 2, "PROCESSING": 1, "RETRYING": 0, "SUCCESS": 0, "FAILED": 0}
        assert tenant_counts["PENDING"] == 1

    async def test_find_stale_processing(self, queue_store, clock):
        stale = await claimed(queue_store, doc_id="INV-1")
        clock.advance(1000)
        await claimed(queue_store, doc_id="INV-2")

        found = await queue_store.find_stale_processing(clock.now - dt.timedelta(seconds=900))

        assert [item.id for item in found] == [stale.id]

    async def test_reenqueue_does_not_refresh_a_stuck_claim(self, queue_store, clock):
        stuck = await claimed(queue_store)
        claim_time = clock.now
        for _ in range(6):
            clock.advance(600)
            again = await queue_store.insert(make_item())
            assert again.updated_at == clock.now

        found = await queue_store.find_stale_processing(clock.now - dt.timedelta(seconds=900))

        assert [item.id for item in found] == [stuck.id]
        assert found[0].claimed_at == claim_time


class TestClaimOwnership:
    """Outcomes are recorded only by the claim that made the attempt."""

    async def test_claim_stamps_claimed_at(self, queue_store, clock):
        item = await claimed(queue_store)

        assert item.claimed_at == clock.now
        assert (await queue_store.find_by_id(item.id)).claimed_at == clock.now

    async def test_superseded_claim_cannot_record_outcome(self, queue_store, clock):
        first = await claimed(queue_store)
        # Released as stale, then taken by another worker once due
        await queue_store.mark_failed(first.id, "Processing timed out", attempt=first.attempts)
        clock.advance(300)
        second = await queue_store.mark_processing(first.id)
        assert second.attempts == 2

        with pytest.raises(InvalidStateTransition):
            await queue_store.mark_failed(first.id, "late timeout", attempt=first.attempts)
        with pytest.raises(InvalidStateTransition):
            await queue_store.mark_success(first.id, "EXT-LATE", attempt=first.attempts)

        current = await queue_store.find_by_id(first.id)
        assert current.status == PostingStatus.PROCESSING
        assert current.attempts == 2
        assert current.last_error == "Processing timed out"
        assert current.external_ref is None

    async def test_live_claim_records_outcome(self, queue_store):
        item = await claimed(queue_store)

        done = await queue_store.mark_success(item.id, "EXT-1", attempt=item.attempts)

        assert done.status == PostingStatus.SUCCESS
        assert done.external_ref == "EXT-1"
