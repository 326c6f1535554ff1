# src/chain_relay/schemas/__init__.py
"""Pydantic schemas for the relay's HTTP surface."""

from .events import QueuedEventResponse, QueueStatsResponse, StatusStats

__all__ = ["QueuedEventResponse", "QueueStatsResponse", "StatusStats"]
