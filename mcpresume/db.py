# -*- coding: utf-8 -*-
"""Location: ./mcpresume/db.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Database models for the event log.

The event log is a single table. ``seq`` is a database-generated surrogate key
and is the ordering key within a stream; ``stored_at`` is kept for diagnostics
and for the ``(stream_id, stored_at)`` lookup index.

Examples:
    >>> EventRecord.__tablename__
    'mcp_events'
    >>> sorted(ix.name for ix in EventRecord.__table__.indexes)
    ['ix_mcp_events_stream_seq', 'ix_mcp_events_stream_stored_at']
"""

# Standard
from datetime import datetime, timezone

# Third-Party
from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

STREAM_ID_MAX_LENGTH = 255
EVENT_ID_MAX_LENGTH = 320


def utc_now() -> datetime:
    """Return the current UTC time.

    Returns:
        datetime: Timezone-aware current time.
    """
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for mcpresume models."""


class EventRecord(Base):
    """One persisted message of a stream. Rows are immutable once written."""

    __tablename__ = "mcp_events"

    # SQLite only autoincrements INTEGER PRIMARY KEY columns.
    seq: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(EVENT_ID_MAX_LENGTH), unique=True, nullable=False)
    stream_id: Mapped[str] = mapped_column(String(STREAM_ID_MAX_LENGTH), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    stored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_mcp_events_stream_seq", "stream_id", "seq"),
        Index("ix_mcp_events_stream_stored_at", "stream_id", "stored_at"),
    )

    def __repr__(self) -> str:
        """Return a short representation.

        Returns:
            str: Representation with id and stream.
        """
        return f"<EventRecord seq={self.seq} event_id={self.event_id!r} stream_id={self.stream_id!r}>"
