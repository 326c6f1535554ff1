# src/chain_relay/db/time.py
"""Time utilities for database models."""

import time
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def epoch_seconds() -> int:
    """Return the current UNIX time in whole seconds."""
    return int(time.time())
