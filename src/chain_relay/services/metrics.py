"""Metrics collection for the relay pipeline.

A single `RelayMetrics` instance is created by the relay service and handed to
every component that reports into it, so tests can inspect a private one.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from chain_relay.db.time import utcnow
from chain_relay.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass
class RelayMetrics:
    """Counters and gauges exposed to the external dashboard."""

    events_received: int = 0
    events_inserted: int = 0
    duplicates_ignored: int = 0
    ingestion_errors: int = 0
    reconciled_events: int = 0
    events_submitted: int = 0
    failed_submissions: int = 0
    dead_lettered: int = 0
    confirmations_failed: int = 0
    ticks: int = 0
    events_purged: int = 0
    pending_in_queue: int = 0
    last_submission_time: datetime | None = None

    def record_received(self, inserted: bool) -> None:
        self.events_received += 1
        if inserted:
            self.events_inserted += 1
        else:
            self.duplicates_ignored += 1

    def record_submission(self, success: bool) -> None:
        if success:
            self.events_submitted += 1
            self.last_submission_time = utcnow()
        else:
            self.failed_submissions += 1

    def set_pending(self, count: int) -> None:
        self.pending_in_queue = count

    def get_success_rate(self) -> float:
        """Get submitted events as a percentage of received events."""
        if self.events_received == 0:
            return 0.0
        return self.events_submitted / self.events_received * 100

    def snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_submission_time"] = (
            self.last_submission_time.isoformat() if self.last_submission_time else None
        )
        data["success_rate"] = round(self.get_success_rate(), 2)
        return data


class MetricsReporter(PeriodicTask):
    """Logs a metrics snapshot at a fixed cadence."""

    name = "metrics-reporter"

    def __init__(self, metrics: RelayMetrics, interval: float) -> None:
        super().__init__(interval, run_immediately=False)
        self.metrics = metrics

    async def run_once(self) -> None:
        logger.info("Metrics: %s", self.metrics.snapshot())
