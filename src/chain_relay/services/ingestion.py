"""Live event ingestion.

The chain source's subscription callback only enqueues raw events into a
bounded in-memory channel. A single consumer task drains the channel and
performs the one store insert per event, so a slow store never stalls the
chain client and submission never runs on the ingestion path.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from chain_relay.services.chain import ChainEventSource, RawEvent, Subscription
from chain_relay.services.errors import ChainSourceError, MalformedEventError
from chain_relay.services.metrics import RelayMetrics
from chain_relay.services.queue_store import EventQueueStore

logger = logging.getLogger(__name__)


def validate_raw_event(event: RawEvent) -> RawEvent:
    """Reject events that cannot become queue rows.

    Raises:
        MalformedEventError: when a required field is missing, mistyped or out of range
    """
    if not event.fingerprint or not isinstance(event.fingerprint, str):
        raise MalformedEventError(f"event has no usable fingerprint: {event.fingerprint!r}")
    if not event.topic_id or not isinstance(event.topic_id, str):
        raise MalformedEventError(f"event {event.fingerprint} has no topic id")
    if not event.event_type or not isinstance(event.event_type, str):
        raise MalformedEventError(f"event {event.fingerprint} has no event type")
    if not isinstance(event.block_number, int) or isinstance(event.block_number, bool):
        raise MalformedEventError(
            f"event {event.fingerprint} block number is {type(event.block_number).__name__}"
        )
    if event.block_number < 0:
        raise MalformedEventError(f"event {event.fingerprint} has negative block number")
    if not event.transaction_hash or not isinstance(event.transaction_hash, str):
        raise MalformedEventError(f"event {event.fingerprint} has no transaction hash")
    if not isinstance(event.payload, bytes):
        raise MalformedEventError(f"event {event.fingerprint} payload is not bytes")
    return event


class EventListener:
    """Subscribes to the chain source and writes observed events to the queue store."""

    def __init__(
        self,
        source: ChainEventSource,
        store: EventQueueStore,
        metrics: RelayMetrics,
        *,
        queue_size: int = 1000,
    ) -> None:
        self.source = source
        self.store = store
        self.metrics = metrics
        self._queue: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=queue_size)
        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the consumer and subscribe to live events."""
        if self.running:
            logger.warning("Event listener is already running")
            return

        self._consumer = asyncio.create_task(self._consume(), name="event-listener")
        try:
            self._subscription = await self.source.subscribe(self.enqueue)
        except ChainSourceError as e:
            logger.error("Event subscription failed, relying on reconciliation: %s", e)
            self._subscription = None
        logger.info("Event listener started")

    async def stop(self) -> None:
        """Tear down the subscription, drain the channel, then stop the consumer."""
        if self._subscription is not None:
            await self._subscription.cancel()
            self._subscription = None

        if self._consumer is None:
            return

        if not self._consumer.done():
            await self._queue.join()
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None
        logger.info("Event listener stopped")

    async def enqueue(self, event: RawEvent) -> None:
        """Subscription callback: hand the event to the consumer."""
        await self._queue.put(event)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.ingest(event)
            except MalformedEventError as e:
                self.metrics.ingestion_errors += 1
                logger.warning("Dropping malformed event: %s", e)
            except SQLAlchemyError as e:
                self.metrics.ingestion_errors += 1
                logger.critical(
                    "Failed to queue event %s (block %s); it may be lost until reconciliation: %s",
                    event.fingerprint,
                    event.block_number,
                    e,
                    exc_info=True,
                )
            except Exception as e:  # noqa: BLE001
                self.metrics.ingestion_errors += 1
                logger.error("Unexpected error queuing event %r: %s", event, e, exc_info=True)
            finally:
                self._queue.task_done()

    async def ingest(self, event: RawEvent) -> bool:
        """Validate and insert one event.

        Returns:
            True when the event was new

        Raises:
            MalformedEventError: if the event cannot be normalized
            SQLAlchemyError: if the store write failed
        """
        validate_raw_event(event)
        inserted = await asyncio.to_thread(self.store.insert, event)
        self.metrics.record_received(inserted)

        if inserted:
            self.metrics.set_pending(await asyncio.to_thread(self.store.pending_count))
            logger.info(
                "Event queued: %s (%d pending)", event.event_type, self.metrics.pending_in_queue
            )
        else:
            logger.debug("Duplicate event ignored: %s", event.fingerprint)
        return inserted
