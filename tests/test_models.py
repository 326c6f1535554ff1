import pytest
from sqlalchemy.exc import IntegrityError

from chain_relay.models import EVENT_STATUSES, EventStatus, QueuedEvent


def test_status_values() -> None:
    assert EVENT_STATUSES == ("pending", "submitted", "failed")


def test_queued_event_defaults(session_factory) -> None:
    with session_factory() as db:
        event = QueuedEvent(
            topic_id="1",
            fingerprint="0xaa",
            event_type="Supply",
            payload=b"",
            block_number=1,
            transaction_hash="0xbb",
            observed_at=10,
        )
        db.add(event)
        db.commit()
        db.refresh(event)

    assert event.status == EventStatus.PENDING
    assert event.retry_count == 0
    assert event.created_at > 0
    assert event.updated_at >= event.created_at
    assert "fingerprint=0xaa" in repr(event)


def test_fingerprint_is_unique(session_factory) -> None:
    values = dict(
        topic_id="1",
        fingerprint="0xaa",
        event_type="Supply",
        payload=b"",
        block_number=1,
        transaction_hash="0xbb",
        observed_at=10,
    )
    with session_factory() as db:
        db.add(QueuedEvent(**values))
        db.commit()
        db.add(QueuedEvent(**values))
        with pytest.raises(IntegrityError):
            db.commit()
