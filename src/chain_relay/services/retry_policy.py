"""Retry and dead-letter policy for consensus log submissions.

The policy only looks at how many attempts have failed. Transient failures
(network partition, timeout) and permanent ones (malformed payload, explicit
rejection) draw from the same budget, and there is no per-event backoff: a
retried event simply waits for the next submission tick.
"""

from __future__ import annotations

from dataclasses import dataclass

from chain_relay.models import EventStatus

DEFAULT_MAX_RETRIES = 10


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed retry budget shared by every failure kind."""

    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    def is_exhausted(self, retry_count: int) -> bool:
        """Return True once the event must be dead-lettered."""
        return retry_count >= self.max_retries

    def next_state(self, retry_count: int) -> str:
        """Return the status an event should hold after `retry_count` failed attempts."""
        return EventStatus.FAILED if self.is_exhausted(retry_count) else EventStatus.PENDING
