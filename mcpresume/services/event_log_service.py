# -*- coding: utf-8 -*-
"""Location: ./mcpresume/services/event_log_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Durable event log for resumable MCP streams.

Design goals:
- Append-only: rows are written once and never updated or deleted here.
- Strict per-stream order: replay orders by the database-generated ``seq``
  column, so events written within the same millisecond keep their order.
- Self-describing cursors: an event id carries its stream id, so a resume
  cursor alone is enough to find the stream to replay.

Event ids look like ``<len(stream_id)>:<stream_id>_<epoch_ms>_<8 hex>``. The
length prefix keeps extraction unambiguous when a stream id contains ``_``.

Examples:
    >>> from datetime import datetime, timezone
    >>> ts = datetime(2025, 1, 1, tzinfo=timezone.utc)
    >>> eid = encode_event_id("my_stream", ts, suffix="0a1b2c3d")
    >>> eid
    '9:my_stream_1735689600000_0a1b2c3d'
    >>> extract_stream_id(eid)
    'my_stream'
    >>> parse_event_id(eid).created_ms
    1735689600000
    >>> extract_stream_id("not-an-event-id")
    ''
"""

# Standard
import asyncio
from datetime import datetime
import logging
import re
from typing import Awaitable, Callable, List, NamedTuple, Optional, Tuple
import uuid

# Third-Party
from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# First-Party
from mcpresume.db import Base, EventRecord, STREAM_ID_MAX_LENGTH, utc_now
from mcpresume.errors import EventIntegrityError, translate_db_error
from mcpresume.utils.db_pool import DatabasePoolManager

logger = logging.getLogger(__name__)

DeliverCallback = Callable[[str, str], Awaitable[None]]

_EVENT_ID_PREFIX = re.compile(r"^(?P<length>[1-9][0-9]{0,3}):")
_EVENT_ID_TAIL = re.compile(r"^_(?P<created_ms>[0-9]+)_(?P<suffix>[0-9a-f]{8})$")


class EventIdParts(NamedTuple):
    """Components encoded in an event id."""

    stream_id: str
    created_ms: int
    suffix: str


def encode_event_id(stream_id: str, created_at: datetime, suffix: Optional[str] = None) -> str:
    """Build an event id for a stream.

    Args:
        stream_id: Stream the event belongs to.
        created_at: Creation instant.
        suffix: Eight lowercase hex chars; random when omitted.

    Returns:
        str: Encoded event id.
    """
    suffix = suffix or uuid.uuid4().hex[:8]
    return f"{len(stream_id)}:{stream_id}_{int(created_at.timestamp() * 1000)}_{suffix}"


def parse_event_id(event_id: Optional[str]) -> Optional[EventIdParts]:
    """Split an event id into its components.

    Args:
        event_id: Candidate event id.

    Returns:
        Optional[EventIdParts]: Components, or None if the id is malformed.

    Examples:
        >>> parse_event_id("3:a:b_17_deadbeef")
        EventIdParts(stream_id='a:b', created_ms=17, suffix='deadbeef')
        >>> parse_event_id("5:ab_17_deadbeef") is None
        True
        >>> parse_event_id(None) is None
        True
    """
    if not event_id:
        return None
    prefix = _EVENT_ID_PREFIX.match(event_id)
    if not prefix:
        return None
    length = int(prefix.group("length"))
    body = event_id[prefix.end() :]
    stream_id, tail = body[:length], body[length:]
    if len(stream_id) != length:
        return None
    match = _EVENT_ID_TAIL.match(tail)
    if not match:
        return None
    return EventIdParts(stream_id, int(match.group("created_ms")), match.group("suffix"))


def extract_stream_id(event_id: Optional[str]) -> str:
    """Return the stream id embedded in an event id.

    Args:
        event_id: Candidate event id.

    Returns:
        str: Stream id, or an empty string when the id cannot be parsed.
    """
    parts = parse_event_id(event_id)
    return parts.stream_id if parts else ""


class EventLogStore:
    """Append-only, per-stream ordered event log on top of SQLAlchemy.

    Each call takes a session from the shared pool, does its work in a worker
    thread and returns; no in-process lock guards appends because ordering is
    assigned by the database.
    """

    def __init__(self, pool_manager: DatabasePoolManager, batch_size: int = 500):
        """Initialize the store.

        Args:
            pool_manager: Owner of the shared engine.
            batch_size: Rows fetched per page during replay.

        Raises:
            ValueError: If batch_size is not positive.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._pool = pool_manager
        self._batch_size = batch_size
        self._schema_lock = asyncio.Lock()
        self._schema_ready = False

    async def ensure_schema(self) -> None:
        """Create the event table and its indexes if they do not exist.

        Safe to call on every start and from several processes at once: a
        failed create is tolerated when the table turns out to exist.

        Raises:
            StorageUnavailableError: If the database cannot be reached.
            PersistenceError: If the table cannot be created.
        """
        async with self._schema_lock:
            if self._schema_ready:
                return
            engine = await self._pool.acquire()

            def _db_create() -> None:
                try:
                    Base.metadata.create_all(engine, tables=[EventRecord.__table__], checkfirst=True)
                except SQLAlchemyError:
                    # Another process may have won the race between the check and the create.
                    if not inspect(engine).has_table(EventRecord.__tablename__):
                        raise
                    logger.info("Event table was created concurrently by another process")

            try:
                await asyncio.to_thread(_db_create)
            except SQLAlchemyError as e:
                logger.error(f"Error ensuring event log schema: {e}")
                raise translate_db_error(e, "ensure_schema") from e

            self._schema_ready = True
            logger.info(f"Event log schema ensured ({EventRecord.__tablename__})")

    async def append(self, stream_id: str, payload: str) -> str:
        """Persist one event and return its id.

        Args:
            stream_id: Stream to append to.
            payload: Serialized message, stored unmodified.

        Returns:
            str: The new event id.

        Raises:
            ValueError: If stream_id is empty or too long.
            StorageUnavailableError: If the pool cannot serve the write.
            PersistenceError: For any other write fault.
        """
        if not stream_id:
            raise ValueError("stream_id must not be empty")
        if len(stream_id) > STREAM_ID_MAX_LENGTH:
            raise ValueError(f"stream_id longer than {STREAM_ID_MAX_LENGTH} characters")

        engine = await self._pool.acquire()
        stored_at = utc_now()
        event_id = encode_event_id(stream_id, stored_at)

        def _db_add() -> None:
            with Session(engine) as db:
                try:
                    db.add(EventRecord(event_id=event_id, stream_id=stream_id, payload=payload, stored_at=stored_at))
                    db.commit()
                except Exception:
                    db.rollback()
                    raise

        try:
            await asyncio.to_thread(_db_add)
        except SQLAlchemyError as e:
            logger.error(f"Error storing event {event_id}: {e}")
            raise translate_db_error(e, "append") from e

        logger.debug(f"Stored event {event_id} for stream {stream_id}")
        return event_id

    async def replay_after(self, last_event_id: str, deliver: DeliverCallback, cancel_event: Optional[asyncio.Event] = None) -> Optional[str]:
        """Deliver every event of a stream written after ``last_event_id``.

        Delivery is sequential: each ``deliver`` call is awaited before the
        next event is sent. A callback raising EventIntegrityError skips that
        event only; storage errors abort the replay and propagate.

        Args:
            last_event_id: Resume cursor.
            deliver: ``async (event_id, payload)`` callback.
            cancel_event: When set, delivery stops before the next event.

        Returns:
            Optional[str]: The stream id; ``""`` if the cursor is empty or
            unparseable; None if the cursor is well formed but unknown.

        Raises:
            StorageUnavailableError: If the pool cannot serve a read.
            PersistenceError: For any other read fault.
        """
        stream_id = extract_stream_id(last_event_id)
        if not stream_id:
            logger.debug(f"Nothing to replay for cursor {last_event_id!r}")
            return ""

        engine = await self._pool.acquire()
        anchor = await self._run_read(engine, self._find_seq, last_event_id, stream_id)
        if anchor is None:
            logger.info(f"Cannot resume stream {stream_id}: event {last_event_id} not found")
            return None

        logger.info(f"Replaying events for stream {stream_id} after event {last_event_id}")
        replayed = skipped = 0
        cursor = anchor
        while True:
            rows = await self._run_read(engine, self._fetch_page, stream_id, cursor)
            for seq, event_id, payload in rows:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Replay of stream {stream_id} cancelled after {replayed} events")
                    return stream_id
                cursor = seq
                try:
                    await deliver(event_id, payload)
                except EventIntegrityError as e:
                    skipped += 1
                    logger.warning(f"Skipping corrupt event during replay: {e}")
                    continue
                replayed += 1
            if len(rows) < self._batch_size:
                break

        logger.info(f"Replayed {replayed} events for stream {stream_id} ({skipped} skipped)")
        return stream_id

    async def count_events(self, stream_id: str) -> int:
        """Count stored events of a stream.

        Args:
            stream_id: Stream to count.

        Returns:
            int: Number of events.
        """
        engine = await self._pool.acquire()

        def _db_count(db: Session) -> int:
            return db.execute(select(func.count()).select_from(EventRecord).where(EventRecord.stream_id == stream_id)).scalar_one()

        return await self._run_read(engine, _db_count)

    async def _run_read(self, engine: Engine, query: Callable, *args):
        """Run a read-only query function in a worker thread.

        Args:
            engine: Engine to open the session on.
            query: Callable taking ``(db, *args)``.
            *args: Extra arguments for ``query``.

        Returns:
            Any: Whatever ``query`` returns.

        Raises:
            StorageUnavailableError: If the pool cannot serve the read.
            PersistenceError: For any other read fault.
        """

        def _db_read():
            with Session(engine) as db:
                return query(db, *args)

        try:
            return await asyncio.to_thread(_db_read)
        except SQLAlchemyError as e:
            logger.error(f"Error reading event log: {e}")
            raise translate_db_error(e, "replay") from e

    @staticmethod
    def _find_seq(db: Session, event_id: str, stream_id: str) -> Optional[int]:
        return db.execute(select(EventRecord.seq).where(EventRecord.event_id == event_id, EventRecord.stream_id == stream_id)).scalar_one_or_none()

    def _fetch_page(self, db: Session, stream_id: str, after_seq: int) -> List[Tuple[int, str, str]]:
        stmt = (
            select(EventRecord.seq, EventRecord.event_id, EventRecord.payload)
            .where(EventRecord.stream_id == stream_id, EventRecord.seq > after_seq)
            .order_by(EventRecord.seq.asc())
            .limit(self._batch_size)
        )
        return [tuple(row) for row in db.execute(stmt).all()]
