# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpresume/services/test_event_log_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Unit tests for EventLogStore.

Runs against a real SQLite file so ordering, paging and error translation
go through SQLAlchemy exactly as in production.
"""

# Standard
import asyncio
from datetime import datetime, timezone
import logging
from unittest.mock import AsyncMock, patch

# Third-Party
import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

# First-Party
from mcpresume.db import EventRecord
from mcpresume.errors import EventIntegrityError, PersistenceError, StorageUnavailableError
from mcpresume.services.event_log_service import encode_event_id, EventLogStore, extract_stream_id, parse_event_id
from mcpresume.utils.db_pool import DatabasePoolManager


class Collector:
    """Async deliver callback recording what it receives."""

    def __init__(self):
        self.delivered = []

    async def __call__(self, event_id, payload):
        self.delivered.append((event_id, payload))


# ---------------------------------------------------------------------------
# Event id encoding
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("stream_id", ["s1", "my_stream", "a:b", "_", "3:x_1_deadbeef", "ünïcode"])
def test_event_id_round_trips_stream_id(stream_id):
    event_id = encode_event_id(stream_id, datetime.now(timezone.utc))
    assert extract_stream_id(event_id) == stream_id


def test_event_id_encodes_creation_instant():
    created = datetime(2025, 6, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
    parts = parse_event_id(encode_event_id("s", created, suffix="abcdef01"))
    assert parts.created_ms == int(created.timestamp() * 1000)
    assert parts.suffix == "abcdef01"


def test_event_ids_are_unique():
    now = datetime.now(timezone.utc)
    assert len({encode_event_id("s", now) for _ in range(1000)}) == 1000


@pytest.mark.parametrize(
    "event_id",
    ["", None, "plain", "s1_1700000000000_deadbeef", "0:_1_deadbeef", "9:short_1_deadbeef", "2:ab_1_DEADBEEF", "2:ab_x_deadbeef", "2:ab_1_deadbeef_extra"],
)
def test_unparseable_event_ids(event_id):
    assert parse_event_id(event_id) is None
    assert extract_stream_id(event_id) == ""


# ---------------------------------------------------------------------------
# append / replay_after
# ---------------------------------------------------------------------------


async def test_concrete_resume_scenario(event_log):
    """Replay after e1 delivers s1's later events only, in order."""
    e1 = await event_log.append("s1", "A")
    e2 = await event_log.append("s1", "B")
    await event_log.append("s2", "X")
    e3b = await event_log.append("s1", "C")

    collector = Collector()
    result = await event_log.replay_after(e1, collector)

    assert result == "s1"
    assert collector.delivered == [(e2, "B"), (e3b, "C")]


@pytest.mark.parametrize("k", [0, 1, 4, 7, 8])
async def test_replay_after_kth_event_delivers_suffix(event_log, k):
    """Paging (batch_size=3) must not lose or reorder events."""
    ids = [await event_log.append("stream", f"m{i}") for i in range(9)]
    await event_log.append("other", "noise")

    collector = Collector()
    await event_log.replay_after(ids[k], collector)

    assert collector.delivered == [(ids[i], f"m{i}") for i in range(k + 1, 9)]


async def test_replay_orders_by_insertion_even_with_identical_timestamps(event_log, pool_manager):
    ids = [await event_log.append("tie", f"m{i}") for i in range(5)]
    engine = await pool_manager.acquire()
    frozen = datetime(2025, 1, 1, tzinfo=timezone.utc)
    with Session(engine) as db:
        db.execute(update(EventRecord).where(EventRecord.stream_id == "tie").values(stored_at=frozen))
        db.commit()

    collector = Collector()
    await event_log.replay_after(ids[0], collector)

    assert [payload for _, payload in collector.delivered] == ["m1", "m2", "m3", "m4"]


async def test_payload_round_trips_unmodified(event_log):
    payloads = ['{"jsonrpc":"2.0","id":1}', "", "  spaced  ", "ünïcode ✓", "x" * 100_000, "line1\nline2\ttabbed"]
    first = await event_log.append("rt", "anchor")
    for payload in payloads:
        await event_log.append("rt", payload)

    collector = Collector()
    await event_log.replay_after(first, collector)

    assert [payload for _, payload in collector.delivered] == payloads


async def test_stream_id_with_separator_characters(event_log):
    """Stream ids containing '_' or ':' never leak into other streams."""
    a1 = await event_log.append("a", "a-1")
    await event_log.append("a_1", "other")
    a2 = await event_log.append("a", "a-2")
    x1 = await event_log.append("a_1", "x-1")
    await event_log.append("a_1", "x-2")

    collector = Collector()
    assert await event_log.replay_after(a1, collector) == "a"
    assert collector.delivered == [(a2, "a-2")]

    collector = Collector()
    assert await event_log.replay_after(x1, collector) == "a_1"
    assert [p for _, p in collector.delivered] == ["x-2"]


async def test_replay_after_last_event_delivers_nothing(event_log):
    last = await event_log.append("s", "only")
    collector = Collector()
    assert await event_log.replay_after(last, collector) == "s"
    assert collector.delivered == []


@pytest.mark.parametrize("cursor", ["", "garbage", "s1_1700000000000_deadbeef"])
async def test_replay_with_unparseable_cursor_is_a_noop(event_log, cursor):
    await event_log.append("s1", "A")
    collector = Collector()
    assert await event_log.replay_after(cursor, collector) == ""
    assert collector.delivered == []


async def test_replay_with_unknown_cursor_returns_none(event_log):
    await event_log.append("s1", "A")
    unknown = encode_event_id("s1", datetime.now(timezone.utc))
    collector = Collector()
    assert await event_log.replay_after(unknown, collector) is None
    assert collector.delivered == []


async def test_replay_cursor_from_another_stream_is_unknown(event_log):
    """An id whose embedded stream does not match its row is not a valid cursor."""
    real = await event_log.append("s1", "A")
    forged = real.replace("2:s1", "2:s2", 1)
    assert await event_log.replay_after(forged, Collector()) is None


async def test_unparseable_cursor_skips_database(event_log, pool_manager):
    with patch.object(pool_manager, "acquire", AsyncMock(side_effect=AssertionError("should not touch the pool"))):
        assert await event_log.replay_after("nope", Collector()) == ""


async def test_delivery_is_sequential(event_log):
    """Each deliver call completes before the next one starts."""
    first = await event_log.append("seq", "m0")
    for i in range(1, 6):
        await event_log.append("seq", f"m{i}")

    in_flight = 0
    order = []

    async def slow_deliver(event_id, payload):
        nonlocal in_flight
        in_flight += 1
        assert in_flight == 1
        await asyncio.sleep(0.01)
        order.append(payload)
        in_flight -= 1

    await event_log.replay_after(first, slow_deliver)
    assert order == ["m1", "m2", "m3", "m4", "m5"]


async def test_corrupt_event_is_skipped_and_replay_continues(event_log, caplog):
    first = await event_log.append("c", "ok-0")
    await event_log.append("c", "ok-1")
    bad = await event_log.append("c", "corrupt")
    await event_log.append("c", "ok-2")

    delivered = []

    async def deliver(event_id, payload):
        if payload == "corrupt":
            raise EventIntegrityError(event_id, "bad payload")
        delivered.append(payload)

    with caplog.at_level(logging.WARNING, logger="mcpresume.services.event_log_service"):
        assert await event_log.replay_after(first, deliver) == "c"

    assert delivered == ["ok-1", "ok-2"]
    assert any(bad in record.getMessage() for record in caplog.records if record.levelno == logging.WARNING)


async def test_deliver_errors_other_than_integrity_propagate(event_log):
    first = await event_log.append("d", "a")
    await event_log.append("d", "b")

    async def failing(event_id, payload):
        raise ConnectionResetError("client went away")

    with pytest.raises(ConnectionResetError):
        await event_log.replay_after(first, failing)


async def test_cancel_event_stops_delivery(event_log):
    first = await event_log.append("cx", "m0")
    for i in range(1, 8):
        await event_log.append("cx", f"m{i}")

    cancel = asyncio.Event()
    delivered = []

    async def deliver(event_id, payload):
        delivered.append(payload)
        if len(delivered) == 2:
            cancel.set()

    assert await event_log.replay_after(first, deliver, cancel_event=cancel) == "cx"
    assert delivered == ["m1", "m2"]
    assert await event_log.count_events("cx") == 8


async def test_task_cancellation_mid_replay_leaves_log_intact(event_log):
    first = await event_log.append("tc", "m0")
    for i in range(1, 5):
        await event_log.append("tc", f"m{i}")

    started = asyncio.Event()

    async def blocking_deliver(event_id, payload):
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(event_log.replay_after(first, blocking_deliver))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    collector = Collector()
    await event_log.replay_after(first, collector)
    assert [p for _, p in collector.delivered] == ["m1", "m2", "m3", "m4"]


async def test_concurrent_appends_to_one_stream_are_all_replayed(event_log):
    anchor = await event_log.append("burst", "anchor")
    ids = await asyncio.gather(*(event_log.append("burst", f"m{i}") for i in range(20)))

    collector = Collector()
    await event_log.replay_after(anchor, collector)

    assert len(set(ids)) == 20
    assert sorted(eid for eid, _ in collector.delivered) == sorted(ids)


@pytest.mark.parametrize("stream_id", ["", "x" * 256])
async def test_append_rejects_invalid_stream_ids(event_log, stream_id):
    with pytest.raises(ValueError):
        await event_log.append(stream_id, "payload")


async def test_count_events(event_log):
    for i in range(4):
        await event_log.append("count", str(i))
    await event_log.append("other", "x")
    assert await event_log.count_events("count") == 4
    assert await event_log.count_events("missing") == 0


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        EventLogStore(DatabasePoolManager("sqlite://"), batch_size=0)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


async def test_append_when_pool_unavailable(event_log, pool_manager):
    await pool_manager.shutdown()
    with pytest.raises(StorageUnavailableError):
        await event_log.append("s", "payload")


async def test_replay_when_pool_unavailable(event_log, pool_manager):
    first = await event_log.append("s", "payload")
    await pool_manager.shutdown()
    with pytest.raises(StorageUnavailableError):
        await event_log.replay_after(first, Collector())


async def test_append_operational_error_is_storage_unavailable(event_log):
    error = OperationalError("INSERT", {}, Exception("connection reset"))
    with patch("mcpresume.services.event_log_service.asyncio.to_thread", AsyncMock(side_effect=error)):
        with pytest.raises(StorageUnavailableError):
            await event_log.append("s", "payload")


async def test_append_integrity_error_is_persistence_failure(event_log):
    error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
    with patch("mcpresume.services.event_log_service.asyncio.to_thread", AsyncMock(side_effect=error)):
        with pytest.raises(PersistenceError):
            await event_log.append("s", "payload")


async def test_append_duplicate_event_id_is_persistence_failure(event_log):
    fixed = "1:s_1700000000000_deadbeef"
    with patch("mcpresume.services.event_log_service.encode_event_id", return_value=fixed):
        await event_log.append("s", "first")
        with pytest.raises(PersistenceError):
            await event_log.append("s", "second")
    assert await event_log.count_events("s") == 1


async def test_storage_error_mid_replay_aborts_and_propagates(event_log):
    first = await event_log.append("p", "m0")
    for i in range(1, 7):
        await event_log.append("p", f"m{i}")

    delivered = []
    original_fetch = EventLogStore._fetch_page
    calls = {"n": 0}

    def flaky_fetch(self, db, stream_id, after_seq):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("SELECT", {}, Exception("server closed the connection"))
        return original_fetch(self, db, stream_id, after_seq)

    async def deliver(event_id, payload):
        delivered.append(payload)

    with patch.object(EventLogStore, "_fetch_page", flaky_fetch):
        with pytest.raises(StorageUnavailableError):
            await event_log.replay_after(first, deliver)

    assert delivered == ["m1", "m2", "m3"]


# ---------------------------------------------------------------------------
# ensure_schema
# ---------------------------------------------------------------------------


async def test_ensure_schema_is_idempotent(pool_manager):
    store = EventLogStore(pool_manager)
    await store.ensure_schema()
    await store.ensure_schema()
    await EventLogStore(pool_manager).ensure_schema()
    assert await store.count_events("any") == 0


async def test_concurrent_ensure_schema_from_separate_stores(pool_manager):
    stores = [EventLogStore(pool_manager) for _ in range(5)]
    await asyncio.gather(*(store.ensure_schema() for store in stores))
    await stores[0].append("s", "ok")
    assert await stores[-1].count_events("s") == 1


async def test_ensure_schema_tolerates_table_created_by_someone_else(pool_manager):
    await EventLogStore(pool_manager).ensure_schema()
    store = EventLogStore(pool_manager)
    error = OperationalError("CREATE TABLE", {}, Exception("table mcp_events already exists"))
    with patch("mcpresume.services.event_log_service.Base.metadata.create_all", side_effect=error):
        await store.ensure_schema()


async def test_ensure_schema_propagates_real_failures(pool_manager):
    store = EventLogStore(pool_manager)
    error = OperationalError("CREATE TABLE", {}, Exception("permission denied"))
    with patch("mcpresume.services.event_log_service.Base.metadata.create_all", side_effect=error):
        with pytest.raises(StorageUnavailableError):
            await store.ensure_schema()
