"""Batch submission of queued events to the consensus log.

Each tick pulls the oldest retry-eligible pending events and submits them one
at a time. Success stamps the log sequence number; failure consumes one unit
of the retry budget and dead-letters the event once the budget is spent.
Events waiting for a retry simply wait for the next tick.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from chain_relay.models import EventStatus, QueuedEvent
from chain_relay.services.consensus_log import ConsensusLogSink
from chain_relay.services.errors import ConsensusLogError, MirrorNodeError
from chain_relay.services.metrics import RelayMetrics
from chain_relay.services.queue_store import EventQueueStore
from chain_relay.services.retry_policy import RetryPolicy
from chain_relay.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

SubmissionConfirmer = Callable[[QueuedEvent, int], Awaitable[bool]]


def build_log_message(event: QueuedEvent) -> bytes:
    """Serialize the outbound consensus log message for `event`.

    `eventHash` carries the fingerprint so a message relayed twice is
    recognisable by readers of the log.
    """
    message = {
        "eventType": event.event_type,
        "eventHash": event.fingerprint,
        "eventData": "0x" + bytes(event.payload).hex(),
        "timestamp": event.observed_at,
        "blockNumber": event.block_number,
        "transactionHash": event.transaction_hash,
    }
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


@dataclass
class TickReport:
    """What a single submission tick did."""

    skipped: bool = False
    submitted: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    dead_lettered: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.submitted) + len(self.retried) + len(self.dead_lettered)


class SubmissionEngine(PeriodicTask):
    """Periodic consensus log submitter."""

    name = "submission-engine"

    def __init__(
        self,
        store: EventQueueStore,
        sink: ConsensusLogSink,
        metrics: RelayMetrics,
        *,
        batch_size: int = 10,
        interval: float = 5.0,
        submit_timeout: float = 15.0,
        retry_policy: RetryPolicy | None = None,
        confirmer: SubmissionConfirmer | None = None,
    ) -> None:
        super().__init__(interval)
        self.store = store
        self.sink = sink
        self.metrics = metrics
        self.batch_size = batch_size
        self.submit_timeout = submit_timeout
        self.retry_policy = retry_policy or store.retry_policy
        self.confirmer = confirmer
        self._tick_lock = asyncio.Lock()

    async def start(self) -> None:
        logger.info(
            "Starting submission engine (batch size %d, interval %.1fs, max retries %d)",
            self.batch_size,
            self.interval,
            self.retry_policy.max_retries,
        )
        await super().start()

    async def run_once(self) -> None:
        await self.tick()

    async def tick(self) -> TickReport:
        """Process one batch of pending events."""
        if self._tick_lock.locked():
            logger.debug("Previous tick still running; skipping")
            return TickReport(skipped=True)

        async with self._tick_lock:
            report = TickReport()
            self.metrics.ticks += 1
            batch = await asyncio.to_thread(self.store.next_pending_batch, self.batch_size)
            if not batch:
                logger.debug("No pending events to process")
                return report

            logger.info("Processing %d event(s)...", len(batch))
            for event in batch:
                await self._process(event, report)

            self.metrics.set_pending(await asyncio.to_thread(self.store.pending_count))
            return report

    async def _process(self, event: QueuedEvent, report: TickReport) -> None:
        logger.info("Submitting %s to topic %s...", event.event_type, event.topic_id)
        try:
            message = build_log_message(event)
            receipt = await asyncio.wait_for(
                self.sink.submit(
                    event.topic_id,
                    message,
                    self.submit_timeout,
                    idempotency_key=event.fingerprint,
                ),
                timeout=self.submit_timeout,
            )
        except TimeoutError:
            error = f"Submission timed out after {self.submit_timeout:.1f}s"
        except (ConsensusLogError, httpx.HTTPError, OSError) as e:
            error = str(e) or e.__class__.__name__
        except (ValueError, TypeError, KeyError) as e:
            logger.error("Cannot build message for event %s: %s", event.id, e, exc_info=True)
            error = f"Malformed event: {e}"
        except Exception as e:  # noqa: BLE001
            logger.error("Unexpected error submitting event %s: %s", event.id, e, exc_info=True)
            error = f"Unexpected error: {e.__class__.__name__}: {e}"
        else:
            if receipt.succeeded and receipt.sequence_number is not None:
                await self._on_success(event, receipt.sequence_number, report)
                return
            error = f"Submission failed: {receipt.status or 'no status'}"

        await self._on_failure(event, error, report)

    async def _on_success(self, event: QueuedEvent, sequence_number: int, report: TickReport) -> None:
        await asyncio.to_thread(self.store.mark_submitted, event.id, sequence_number)
        self.metrics.record_submission(success=True)
        report.submitted.append(event.fingerprint)
        logger.info(
            "Submission successful: %s (topic %s, sequence %d)",
            event.event_type,
            event.topic_id,
            sequence_number,
        )
        if self.confirmer is not None:
            await self._confirm(event, sequence_number)

    async def _on_failure(self, event: QueuedEvent, error: str, report: TickReport) -> None:
        logger.error("Failed to submit event %s: %s", event.fingerprint, error)
        self.metrics.record_submission(success=False)
        retry_count = await asyncio.to_thread(self.store.increment_retry, event.id, error)

        if self.retry_policy.next_state(retry_count) == EventStatus.FAILED:
            await asyncio.to_thread(self.store.mark_failed, event.id, error)
            self.metrics.dead_lettered += 1
            report.dead_lettered.append(event.fingerprint)
            logger.error(
                "Max retries exceeded for event %s after %d attempts", event.fingerprint, retry_count
            )
        else:
            report.retried.append(event.fingerprint)

    async def _confirm(self, event: QueuedEvent, sequence_number: int) -> None:
        """Best-effort confirmation; never affects the event's state."""
        try:
            confirmed = await asyncio.wait_for(
                self.confirmer(event, sequence_number), timeout=self.submit_timeout
            )
        except (TimeoutError, MirrorNodeError, httpx.HTTPError, OSError, ValueError) as e:
            self.metrics.confirmations_failed += 1
            logger.debug("Confirmation for %s failed: %s", event.fingerprint, e)
            return

        if not confirmed:
            self.metrics.confirmations_failed += 1
            logger.debug("Event %s not yet visible at sequence %d", event.fingerprint, sequence_number)
