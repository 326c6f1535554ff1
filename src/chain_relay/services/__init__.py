# src/chain_relay/services/__init__.py
"""Relay pipeline services."""

from .ingestion import EventListener
from .queue_store import EventQueueStore
from .reconciliation import HistoricalReconciler
from .relay import RelayService
from .retry_policy import RetryPolicy
from .submission import SubmissionEngine

__all__ = [
    "EventListener",
    "EventQueueStore",
    "HistoricalReconciler",
    "RelayService",
    "RetryPolicy",
    "SubmissionEngine",
]
