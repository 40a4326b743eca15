"""
Tests for PostingSweeper background delivery.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from posting_queue.models import ConnectionStatus, IntegrationConnection, PostResult, PostingStatus
from posting_queue.services import PostingSweeper


@pytest.fixture
def sweeper(service, connections):
    return PostingSweeper(
        service=service,
        connections=connections,
        batch_size=10,
        max_concurrent=2,
        poll_interval=0.01,
        stale_after_seconds=900,
    )


async def enqueue(service, integration_id, doc_id):
    return await service.enqueue("T1", integration_id, "INVOICE", doc_id, {"doc": doc_id})


class TestPostingSweeper:
    """Test suite for PostingSweeper."""

    async def test_run_once_delivers_due_items(self, sweeper, service, connection, poster):
        for n in range(3):
            await enqueue(service, connection.id, f"D{n}")

        stats = await sweeper.run_once()

        assert stats.integrations == 1
        assert stats.attempted == 3
        assert stats.succeeded == 3
        assert len(poster.calls) == 3
        assert (await service.queue_depth())["SUCCESS"] == 3

    async def test_disconnected_integrations_are_not_swept(self, sweeper, service, connections, poster):
        disconnected = await connections.create(IntegrationConnection(
            tenant_id="T1", type="xero", name="Xero",
            status=ConnectionStatus.DISCONNECTED.value,
        ))
        item = await enqueue(service, disconnected.id, "D1")

        stats = await sweeper.run_once()

        assert stats.integrations == 0
        assert poster.calls == []
        assert (await service.get_queue_item(item.id)).status == PostingStatus.PENDING

    async def test_failures_are_counted_and_retried_later(self, sweeper, service, connection, poster, clock):
        poster.results = [PostResult.failure("HTTP 503")]
        item = await enqueue(service, connection.id, "D1")

        first = await sweeper.run_once()
        assert first.retrying == 1

        # Not due yet
        second = await sweeper.run_once()
        assert second.attempted == 0

        clock.advance(300)
        third = await sweeper.run_once()
        assert third.succeeded == 1
        assert (await service.get_queue_item(item.id)).attempts == 2

    async def test_one_document_error_does_not_stop_the_sweep(self, sweeper, service, connection, poster):
        bad = await enqueue(service, connection.id, "D1")
        await enqueue(service, connection.id, "D2")

        original = service.deliver

        async def flaky_deliver(item_id):
            if item_id == bad.id:
                raise RuntimeError("store unavailable")
            return await original(item_id)

        service.deliver = flaky_deliver

        stats = await sweeper.run_once()

        assert stats.errors == 1
        assert stats.succeeded == 1

    async def test_run_once_releases_stale_claims(self, sweeper, service, connection, clock):
        item = await enqueue(service, connection.id, "D1")
        await service.process_item(item.id)
        clock.advance(1000)

        stats = await sweeper.run_once()

        assert stats.released == 1
        # Released as RETRYING with a 300s backoff, so not delivered in the same pass
        assert (await service.get_queue_item(item.id)).status == PostingStatus.RETRYING

    async def test_stale_recovery_can_be_disabled(self, service, connections, connection, clock):
        sweeper = PostingSweeper(service, connections, stale_after_seconds=0)
        service.release_stale_claims = AsyncMock(return_value=0)

        await sweeper.run_once()

        service.release_stale_claims.assert_not_called()

    async def test_concurrency_is_bounded(self, sweeper, service, connection, poster):
        in_flight = 0
        peak = 0

        async def slow_post(conn, doc_type, payload):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return PostResult.ok("EXT")

        poster.post = slow_post
        for n in range(6):
            await enqueue(service, connection.id, f"D{n}")

        stats = await sweeper.run_once()

        assert stats.succeeded == 6
        assert peak <= 2

    async def test_start_and_stop(self, sweeper, service, connection, poster):
        await enqueue(service, connection.id, "D1")

        task = asyncio.create_task(sweeper.start())
        for _ in range(100):
            if poster.calls:
                break
            await asyncio.sleep(0.01)

        assert sweeper.is_running
        await sweeper.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert not sweeper.is_running
        assert len(poster.calls) == 1
