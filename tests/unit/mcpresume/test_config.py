# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpresume/test_config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Unit tests for the Settings model.
"""

# Standard
import logging

# Third-Party
from pydantic import ValidationError
import pytest

# First-Party
from mcpresume.config import get_settings, Settings


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://u:p@db:5432/events")
    monkeypatch.setenv("DB_POOL_SIZE", "3")
    monkeypatch.setenv("EVENT_REPLAY_BATCH_SIZE", "50")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = Settings(_env_file=None)
    assert s.database_url.startswith("postgresql")
    assert s.is_sqlite is False
    assert s.database_settings["pool_size"] == 3
    assert s.database_settings["pool_pre_ping"] is True
    assert s.event_replay_batch_size == 50
    assert s.log_level == "DEBUG"
    assert s.log_level_value == logging.DEBUG


def test_sqlite_settings_skip_pool_sizing():
    s = Settings(_env_file=None, database_url="sqlite:///./x.db")
    assert s.is_sqlite
    assert s.database_settings == {"connect_args": {"check_same_thread": False}, "pool_pre_ping": True}


@pytest.mark.parametrize("field,value", [("log_level", "verbose"), ("log_format", "xml"), ("event_replay_batch_size", 0), ("db_pool_size", 0)])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_settings_are_cached():
    assert get_settings() is get_settings()
