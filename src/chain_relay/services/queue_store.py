"""Durable queue store for observed chain events.

Each observed event becomes one `QueuedEvent` row. The unique fingerprint
column is the dedup gate for both live ingestion and historical
reconciliation. All writes are single-row statements committed in their own
session, so a write that returned has been made durable by the database.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from chain_relay.db.session import SessionLocal, create_tables
from chain_relay.db.time import epoch_seconds
from chain_relay.models import EVENT_STATUSES, EventStatus, QueuedEvent, RelayMetadata
from chain_relay.services.chain import RawEvent
from chain_relay.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

SCHEMA_VERSION_KEY = "schema_version"
SCHEMA_VERSION = "1"

_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class EventQueueStore:
    """Persistence and state transitions for queued events."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        genesis_block: int = 0,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.retry_policy = retry_policy or RetryPolicy()
        self.genesis_block = genesis_block

    @property
    def max_retries(self) -> int:
        return self.retry_policy.max_retries

    def initialize(self) -> None:
        """Create the schema if needed and record its version."""
        create_tables(self._session_factory.kw.get("bind"))
        if self.get_metadata(SCHEMA_VERSION_KEY) is None:
            self.set_metadata(SCHEMA_VERSION_KEY, SCHEMA_VERSION)
        logger.info("Queue store initialized")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def insert(self, event: RawEvent, observed_at: int | None = None) -> bool:
        """Queue `event` as pending.

        Returns:
            True when a row was created, False when the fingerprint was already known
        """
        now = epoch_seconds()
        values: dict[str, Any] = {
            "topic_id": event.topic_id,
            "fingerprint": event.fingerprint,
            "event_type": event.event_type,
            "payload": event.payload,
            "block_number": event.block_number,
            "transaction_hash": event.transaction_hash,
            "observed_at": now if observed_at is None else observed_at,
            "status": EventStatus.PENDING,
            "retry_count": 0,
            "created_at": now,
            "updated_at": now,
        }

        with self._session_factory() as db:
            dialect = db.get_bind().dialect.name
            build_insert = _UPSERT_INSERTS.get(dialect)
            if build_insert is not None:
                stmt = build_insert(QueuedEvent).values(**values)
                stmt = stmt.on_conflict_do_nothing(index_elements=["fingerprint"])
                result = db.execute(stmt)
                db.commit()
                inserted = bool(result.rowcount)
            else:
                db.add(QueuedEvent(**values))
                try:
                    db.commit()
                    inserted = True
                except IntegrityError:
                    db.rollback()
                    inserted = False

        if not inserted:
            logger.debug("Event already exists: %s", event.fingerprint)
        return inserted

    def exists(self, fingerprint: str) -> bool:
        with self._session_factory() as db:
            found = db.execute(
                select(QueuedEvent.id).where(QueuedEvent.fingerprint == fingerprint).limit(1)
            ).first()
        return found is not None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def next_pending_batch(self, limit: int) -> list[QueuedEvent]:
        """Return up to `limit` retry-eligible pending events, oldest first."""
        if limit <= 0:
            return []
        with self._session_factory() as db:
            rows = db.scalars(
                select(QueuedEvent)
                .where(
                    QueuedEvent.status == EventStatus.PENDING,
                    QueuedEvent.retry_count < self.max_retries,
                )
                .order_by(QueuedEvent.observed_at.asc(), QueuedEvent.id.asc())
                .limit(limit)
            ).all()
        return list(rows)

    def mark_submitted(self, event_id: int, log_sequence_number: int) -> bool:
        """Move a pending event to `submitted`; returns False if it was not pending."""
        return self._transition(
            event_id,
            status=EventStatus.SUBMITTED,
            log_sequence_number=log_sequence_number,
            last_error=None,
        )

    def mark_failed(self, event_id: int, error_message: str) -> bool:
        """Move a pending event to the terminal `failed` state."""
        return self._transition(event_id, status=EventStatus.FAILED, last_error=error_message)

    def increment_retry(self, event_id: int, error_message: str | None = None) -> int:
        """Count one failed attempt; the event stays pending.

        Returns:
            The post-increment retry count
        """
        values: dict[str, Any] = {
            "retry_count": QueuedEvent.retry_count + 1,
            "updated_at": epoch_seconds(),
        }
        if error_message is not None:
            values["last_error"] = error_message

        with self._session_factory() as db:
            db.execute(
                update(QueuedEvent)
                .where(QueuedEvent.id == event_id, QueuedEvent.status == EventStatus.PENDING)
                .values(**values)
            )
            db.commit()
            retry_count = db.scalar(
                select(QueuedEvent.retry_count).where(QueuedEvent.id == event_id)
            )
        if retry_count is None:
            raise LookupError(f"Queued event {event_id} does not exist")
        return int(retry_count)

    def _transition(self, event_id: int, **values: Any) -> bool:
        values["updated_at"] = epoch_seconds()
        with self._session_factory() as db:
            result = db.execute(
                update(QueuedEvent)
                .where(QueuedEvent.id == event_id, QueuedEvent.status == EventStatus.PENDING)
                .values(**values)
            )
            db.commit()
        if not result.rowcount:
            logger.warning(
                "Event %s is not pending; transition to %s ignored", event_id, values["status"]
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Watermark, statistics and inspection
    # ------------------------------------------------------------------

    def highest_observed_block(self) -> int:
        """Return the reconciliation watermark."""
        with self._session_factory() as db:
            highest = db.scalar(select(func.max(QueuedEvent.block_number)))
        return self.genesis_block if highest is None else int(highest)

    def count_by_status(self) -> dict[str, int]:
        counts = dict.fromkeys(EVENT_STATUSES, 0)
        with self._session_factory() as db:
            rows = db.execute(
                select(QueuedEvent.status, func.count(QueuedEvent.id)).group_by(QueuedEvent.status)
            ).all()
        for status, count in rows:
            counts[status] = int(count)
        return counts

    def pending_count(self) -> int:
        with self._session_factory() as db:
            count = db.scalar(
                select(func.count(QueuedEvent.id)).where(QueuedEvent.status == EventStatus.PENDING)
            )
        return int(count or 0)

    def stats(self) -> list[dict[str, Any]]:
        """Return count and average retries per status."""
        with self._session_factory() as db:
            rows = db.execute(
                select(
                    QueuedEvent.status,
                    func.count(QueuedEvent.id),
                    func.avg(QueuedEvent.retry_count),
                ).group_by(QueuedEvent.status)
            ).all()
        return [
            {"status": status, "count": int(count), "avg_retries": float(avg or 0.0)}
            for status, count, avg in rows
        ]

    def get(self, event_id: int) -> QueuedEvent | None:
        with self._session_factory() as db:
            return db.get(QueuedEvent, event_id)

    def list_events(
        self,
        *,
        status: str | None = None,
        topic_id: str | None = None,
        limit: int = 20,
    ) -> list[QueuedEvent]:
        """Return the most recently observed events, newest first."""
        query = select(QueuedEvent).order_by(
            QueuedEvent.observed_at.desc(), QueuedEvent.id.desc()
        )
        if status:
            query = query.where(QueuedEvent.status == status)
        if topic_id:
            query = query.where(QueuedEvent.topic_id == topic_id)
        with self._session_factory() as db:
            return list(db.scalars(query.limit(limit)).all())

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_submitted(self, older_than: int, limit: int = 500) -> int:
        """Delete at most `limit` submitted rows observed before `older_than`.

        Returns:
            Number of deleted rows
        """
        with self._session_factory() as db:
            doomed = (
                select(QueuedEvent.id)
                .where(
                    QueuedEvent.status == EventStatus.SUBMITTED,
                    QueuedEvent.observed_at < older_than,
                )
                .order_by(QueuedEvent.observed_at.asc())
                .limit(limit)
            )
            result = db.execute(
                delete(QueuedEvent)
                .where(
                    QueuedEvent.id.in_(doomed.scalar_subquery()),
                    QueuedEvent.status == EventStatus.SUBMITTED,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self, key: str) -> str | None:
        with self._session_factory() as db:
            row = db.get(RelayMetadata, key)
            return row.value if row else None

    def set_metadata(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = db.get(RelayMetadata, key)
            if row is None:
                db.add(RelayMetadata(key=key, value=value))
            else:
                row.value = value
            db.commit()

    def close(self) -> None:
        """Release pooled connections held by the store's engine."""
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            bind.dispose()
        logger.info("Queue store closed")
