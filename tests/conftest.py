# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared fixtures: a throwaway SQLite event log per test.
"""

# Standard
import os
import tempfile

# Hard-force hermetic defaults before the application settings are imported.
# A file database (not ":memory:") because store operations run in worker threads.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="mcpresume-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'app.db')}"
os.environ["JSON_RESPONSE_ENABLED"] = "true"
os.environ["LOG_FORMAT"] = "text"

# Third-Party
import pytest  # noqa: E402

# First-Party
from mcpresume.services.event_log_service import EventLogStore  # noqa: E402
from mcpresume.utils.db_pool import DatabasePoolManager  # noqa: E402

SQLITE_OPTIONS = {"connect_args": {"check_same_thread": False}}


@pytest.fixture
def sqlite_url(tmp_path):
    """File-backed SQLite URL, shared by all worker threads of a test."""
    return f"sqlite:///{tmp_path / 'events.db'}"


@pytest.fixture
async def pool_manager(sqlite_url):
    """Pool manager bound to the per-test database."""
    manager = DatabasePoolManager(sqlite_url, SQLITE_OPTIONS)
    yield manager
    await manager.shutdown()


@pytest.fixture
async def event_log(pool_manager):
    """Event log with its schema in place; a small page size exercises paging."""
    store = EventLogStore(pool_manager, batch_size=3)
    await store.ensure_schema()
    return store
