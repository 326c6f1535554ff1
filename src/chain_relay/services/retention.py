"""Periodic deletion of old submitted events."""

from __future__ import annotations

import asyncio
import logging

from chain_relay.db.time import epoch_seconds
from chain_relay.services.metrics import RelayMetrics
from chain_relay.services.queue_store import EventQueueStore
from chain_relay.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


class RetentionSweeper(PeriodicTask):
    """Removes `submitted` rows whose `observed_at` is older than the retention window.

    Only terminal rows outside the window are targeted, so a sweep never touches
    an event the submission engine may still be updating.
    """

    name = "retention-sweeper"

    def __init__(
        self,
        store: EventQueueStore,
        metrics: RelayMetrics,
        *,
        retention_seconds: int,
        interval: float,
        batch_size: int = 500,
    ) -> None:
        super().__init__(interval, run_immediately=False)
        self.store = store
        self.metrics = metrics
        self.retention_seconds = retention_seconds
        self.batch_size = batch_size

    async def run_once(self) -> None:
        await self.sweep()

    async def sweep(self, now: int | None = None) -> int:
        """Delete expired rows in bounded batches; returns the number removed."""
        cutoff = (epoch_seconds() if now is None else now) - self.retention_seconds
        total = 0
        while True:
            deleted = await asyncio.to_thread(
                self.store.purge_submitted, cutoff, self.batch_size
            )
            total += deleted
            if deleted < self.batch_size:
                break

        self.metrics.events_purged += total
        logger.info("Cleaned up %d old events", total)
        return total
