"""SQLAlchemy model for the relay key/value metadata table."""

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from chain_relay.db.session import Base


class RelayMetadata(Base):
    """Small key/value table reserved for watermark and schema versioning."""

    __tablename__ = "metadata"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
