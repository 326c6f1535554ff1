# tests/conftest.py
from __future__ import annotations

import asyncio
import itertools
import json
import os
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RELAY_ENABLED", "false")

from chain_relay.db.session import build_engine, create_tables
from chain_relay.services.chain import RawEvent
from chain_relay.services.consensus_log import STATUS_SUCCESS, SubmissionReceipt
from chain_relay.services.errors import ChainSourceError, ConsensusLogError
from chain_relay.services.metrics import RelayMetrics
from chain_relay.services.queue_store import EventQueueStore
from chain_relay.services.retry_policy import RetryPolicy

TEST_DB_URL = "sqlite://"


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> EventQueueStore:
    return EventQueueStore(session_factory, retry_policy=RetryPolicy(10), genesis_block=0)


@pytest.fixture()
def file_store(tmp_path) -> Iterator[EventQueueStore]:
    """Store on a file database, for tests where several threads hit the store at once."""
    engine = build_engine(f"sqlite:///{tmp_path / 'events.db'}")
    create_tables(engine)
    try:
        yield EventQueueStore(
            sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False),
            retry_policy=RetryPolicy(10),
        )
    finally:
        engine.dispose()


@pytest.fixture()
def metrics() -> RelayMetrics:
    return RelayMetrics()


@pytest.fixture()
def make_event() -> Callable[..., RawEvent]:
    """Build RawEvents with unique defaults."""
    counter = itertools.count(1)

    def _make(
        fingerprint: str | None = None,
        *,
        block_number: int = 1,
        topic_id: str = "4242",
        event_type: str = "Supply",
        payload: bytes = b"\x01\x02",
        transaction_hash: str | None = None,
    ) -> RawEvent:
        n = next(counter)
        return RawEvent(
            topic_id=topic_id,
            fingerprint=fingerprint or f"0x{n:064x}",
            event_type=event_type,
            payload=payload,
            block_number=block_number,
            transaction_hash=transaction_hash or f"0x{n + 1000:064x}",
        )

    return _make


class FakeSubscription:
    def __init__(self) -> None:
        self.cancelled = False

    async def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeChainSource:
    """In-memory chain: events keyed by block plus a movable head."""

    head: int = 0
    events: list[RawEvent] = field(default_factory=list)
    fail_head: bool = False
    fail_subscribe: bool = False
    range_calls: list[tuple[int, int]] = field(default_factory=list)
    callback: Any = None
    subscription: FakeSubscription | None = None
    closed: bool = False

    async def subscribe(self, callback: Any) -> FakeSubscription:
        if self.fail_subscribe:
            raise ChainSourceError("subscription refused")
        self.callback = callback
        self.subscription = FakeSubscription()
        return self.subscription

    async def emit(self, event: RawEvent) -> None:
        assert self.callback is not None, "nothing subscribed"
        await self.callback(event)

    async def query_range(self, from_block: int, to_block: int) -> list[RawEvent]:
        self.range_calls.append((from_block, to_block))
        return [e for e in self.events if from_block <= e.block_number <= to_block]

    async def current_block_height(self) -> int:
        if self.fail_head:
            raise ChainSourceError("rpc unavailable")
        return self.head

    async def close(self) -> None:
        self.closed = True


class FakeSink:
    """Consensus log double with scripted outcomes.

    `outcomes` is consumed per call: "ok", "reject", "error" or "hang".
    Once exhausted, `default` applies.
    """

    def __init__(self, default: str = "ok", outcomes: list[str] | None = None) -> None:
        self.default = default
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, dict[str, Any], str | None]] = []
        self.sequences: dict[str, int] = defaultdict(int)
        self.closed = False

    @property
    def submitted_fingerprints(self) -> list[str]:
        return [message["eventHash"] for _, message, _ in self.calls]

    async def submit(
        self, topic_id: str, payload: bytes, timeout: float, *, idempotency_key: str | None = None
    ) -> SubmissionReceipt:
        self.calls.append((topic_id, json.loads(payload), idempotency_key))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if outcome == "error":
            raise ConsensusLogError("gateway unreachable")
        if outcome == "hang":
            await asyncio.sleep(5)
        if outcome == "reject":
            return SubmissionReceipt(status="INVALID_TOPIC_ID", sequence_number=None, topic_id=topic_id)
        self.sequences[topic_id] += 1
        return SubmissionReceipt(
            status=STATUS_SUCCESS, sequence_number=self.sequences[topic_id], topic_id=topic_id
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def chain_source() -> FakeChainSource:
    return FakeChainSource()


@pytest.fixture()
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture()
def make_sink() -> Callable[..., FakeSink]:
    return FakeSink
