# src/chain_relay/models/__init__.py
"""SQLAlchemy models for the chain relay queue store."""

from .metadata import RelayMetadata
from .queued_event import EVENT_STATUSES, EventStatus, QueuedEvent

__all__ = [
    "EVENT_STATUSES",
    "EventStatus",
    "QueuedEvent",
    "RelayMetadata",
]
