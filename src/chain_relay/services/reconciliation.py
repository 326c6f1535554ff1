"""Historical reconciliation of missed chain events.

On startup the relay compares the highest block recorded in the queue store
with the chain head and replays the gap. Inserts go through the store's
fingerprint dedup, so a pass may be repeated or overlap live ingestion.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from chain_relay.services.chain import ChainEventSource
from chain_relay.services.errors import ChainSourceError, MalformedEventError
from chain_relay.services.ingestion import validate_raw_event
from chain_relay.services.metrics import RelayMetrics
from chain_relay.services.queue_store import EventQueueStore

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass."""

    watermark: int
    head: int
    from_block: int | None = None
    to_block: int | None = None
    found: int = 0
    inserted: int = 0
    skipped: int = 0
    malformed: int = 0

    @property
    def replayed(self) -> bool:
        return self.from_block is not None


class HistoricalReconciler:
    """Replays events between the store watermark and the chain head."""

    def __init__(
        self,
        source: ChainEventSource,
        store: EventQueueStore,
        metrics: RelayMetrics,
        *,
        max_block_range: int = 1000,
    ) -> None:
        self.source = source
        self.store = store
        self.metrics = metrics
        self.max_block_range = max(1, max_block_range)

    async def run(self) -> ReconciliationReport:
        """Run one pass.

        Raises:
            ChainSourceError: when the chain cannot be queried
            SQLAlchemyError: when the store cannot be read or written
        """
        watermark = await asyncio.to_thread(self.store.highest_observed_block)
        head = await self.source.current_block_height()
        report = ReconciliationReport(watermark=watermark, head=head)

        if head - watermark <= 1:
            logger.debug("No missed blocks (watermark %d, head %d)", watermark, head)
            return report

        report.from_block, report.to_block = watermark + 1, head
        logger.info("Processing %d missed blocks (%d..%d)", head - watermark, watermark + 1, head)

        chunk_start = watermark + 1
        while chunk_start <= head:
            chunk_end = min(head, chunk_start + self.max_block_range - 1)
            events = await self.source.query_range(chunk_start, chunk_end)
            report.found += len(events)

            for event in events:
                try:
                    validate_raw_event(event)
                except MalformedEventError as e:
                    report.malformed += 1
                    self.metrics.ingestion_errors += 1
                    logger.warning("Skipping malformed historical event: %s", e)
                    continue

                if await asyncio.to_thread(self.store.exists, event.fingerprint):
                    report.skipped += 1
                    continue

                inserted = await asyncio.to_thread(self.store.insert, event)
                self.metrics.record_received(inserted)
                if inserted:
                    report.inserted += 1
                    self.metrics.reconciled_events += 1
                    logger.info("Added historical event: %s", event.event_type)
                else:
                    report.skipped += 1

            chunk_start = chunk_end + 1

        self.metrics.set_pending(await asyncio.to_thread(self.store.pending_count))
        logger.info(
            "Reconciliation found %d historical events, inserted %d",
            report.found,
            report.inserted,
        )
        return report

    async def run_bounded(self, timeout: float) -> ReconciliationReport | None:
        """Run one pass, abandoning it with a logged error instead of raising."""
        try:
            return await asyncio.wait_for(self.run(), timeout=timeout)
        except TimeoutError:
            logger.error("Reconciliation abandoned after %.1fs", timeout)
        except ChainSourceError as e:
            logger.error("Reconciliation abandoned, chain source error: %s", e)
        except SQLAlchemyError as e:
            logger.error("Reconciliation abandoned, store error: %s", e, exc_info=True)
        except Exception as e:  # noqa: BLE001
            logger.error("Reconciliation abandoned, unexpected error: %s", e, exc_info=True)
        return None
