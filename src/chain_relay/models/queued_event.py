"""SQLAlchemy model for events waiting to be relayed to the consensus log."""

from typing import Final

from sqlalchemy import VARCHAR, BigInteger, Index, Integer, LargeBinary, SmallInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from chain_relay.db.session import Base
from chain_relay.db.time import epoch_seconds


class EventStatus:
    """Delivery states of a queued event."""

    PENDING: Final[str] = "pending"
    SUBMITTED: Final[str] = "submitted"
    FAILED: Final[str] = "failed"


EVENT_STATUSES: Final[tuple[str, ...]] = (
    EventStatus.PENDING,
    EventStatus.SUBMITTED,
    EventStatus.FAILED,
)


class QueuedEvent(Base):
    """One observed contract event and its delivery state."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic_id: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)  # stored verbatim
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(Text, nullable=False)
    observed_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        VARCHAR(20), nullable=False, default=EventStatus.PENDING
    )  # 'pending', 'submitted', 'failed'
    retry_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    log_sequence_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=epoch_seconds)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=epoch_seconds)

    __table_args__ = (
        Index("idx_events_status", "status"),
        Index("idx_events_observed_at", "observed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QueuedEvent(id={self.id}, type={self.event_type}, "
            f"fingerprint={self.fingerprint}, status={self.status})>"
        )
