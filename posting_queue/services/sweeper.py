"""
Posting Sweeper

Background driver that delivers due queue items for every connected
integration.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from posting_queue.models.connection import ConnectionStatus
from posting_queue.models.posting import PostingQueueItem, PostingStatus
from posting_queue.repositories.connections import ConnectionStore
from posting_queue.services.posting_service import PostingQueueService
from posting_queue.utils.metrics import metrics


@dataclass
class SweepStats:
    """Counts from one sweep pass."""
    integrations: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    retrying: int = 0
    skipped: int = 0
    errors: int = 0
    released: int = 0


class PostingSweeper:
    """
    Periodic sweep over due posting queue items.

    Each pass releases stale claims, lists CONNECTED integrations and
    delivers their due items with bounded concurrency.

    Attributes:
        service: Posting queue service used for delivery
        connections: Connection registry
        batch_size: Max due items fetched per integration per pass
        max_concurrent: Maximum number of deliveries in flight
        poll_interval: Seconds to wait between passes
        stale_after_seconds: PROCESSING age that counts as abandoned (0 disables)
    """

    def __init__(
        self,
        service: PostingQueueService,
        connections: ConnectionStore,
        batch_size: int = 50,
        max_concurrent: int = 5,
        poll_interval: float = 30.0,
        stale_after_seconds: int = 900,
    ):
        self.service = service
        self.connections = connections
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.stale_after_seconds = stale_after_seconds
        self._running = False
        self._stop_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the sweeper.

        Runs passes until stop() is called. A failing pass is logged and
        the loop continues with the next one.
        """
        if self._running:
            logger.warning("Sweeper already running")
            return

        self._running = True
        self._stop_event.clear()
        logger.info(
            f"🚀 Posting sweeper started (max_concurrent={self.max_concurrent}, "
            f"poll_interval={self.poll_interval}s)"
        )

        try:
            while self._running:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.opt(exception=True).error(f"Sweep pass failed: {e}")

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("🛑 Posting sweeper stopped")

    async def stop(self) -> None:
        """Stop after the current pass; in-flight deliveries finish first."""
        if not self._running:
            return

        logger.info("Stopping posting sweeper...")
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> SweepStats:
        """Perform a single sweep pass."""
        stats = SweepStats()

        if self.stale_after_seconds > 0:
            stats.released = await self.service.release_stale_claims(
                self.stale_after_seconds, limit=self.batch_size
            )

        connected = await self.connections.find_by_status(ConnectionStatus.CONNECTED.value)
        stats.integrations = len(connected)

        for connection in connected:
            due = await self.service.get_due_items(connection.id, self.batch_size)
            if not due:
                continue

            stats.attempted += len(due)
            outcomes = await asyncio.gather(*(self._deliver(item) for item in due))
            for outcome in outcomes:
                if outcome is None:
                    stats.errors += 1
                elif outcome == "skipped":
                    stats.skipped += 1
                elif outcome == PostingStatus.SUCCESS:
                    stats.succeeded += 1
                elif outcome == PostingStatus.RETRYING:
                    stats.retrying += 1
                else:
                    stats.failed += 1

        metrics.update_queue_depth(await self.service.queue_depth())

        if stats.attempted or stats.released:
            logger.info(f"Sweep complete: {stats}")
        return stats

    async def _deliver(self, item: PostingQueueItem) -> Optional[str]:
        """
        Deliver one item with concurrency control.

        Returns:
            The resulting status, "skipped", or None if delivery raised
        """
        async with self._semaphore:
            try:
                delivery = await self.service.deliver(item.id)
            except Exception as e:
                logger.opt(exception=True).bind(
                    queue_item_id=item.id,
                    integration_id=item.integration_id,
                ).error(f"❌ Delivery of queue item {item.id} raised: {e}")
                return None

            if delivery.skipped:
                return "skipped"
            return delivery.item.status
