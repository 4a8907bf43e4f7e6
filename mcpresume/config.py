# -*- coding: utf-8 -*-
"""Location: ./mcpresume/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP Resume Configuration.
This module defines configuration settings for the resumable MCP server using
Pydantic Settings. Values are read from environment variables (or a ``.env``
file) once at process start and are not re-read afterwards.

Examples:
    >>> from mcpresume.config import Settings
    >>> s = Settings(_env_file=None, database_url="sqlite:///./test.db")
    >>> s.database_settings["connect_args"]
    {'check_same_thread': False}
    >>> "pool_size" in s.database_settings
    False
    >>> s = Settings(_env_file=None, database_url="postgresql://u:p@db/events", db_pool_size=5)
    >>> s.database_settings["pool_size"]
    5
"""

# Standard
from functools import lru_cache
import logging
from typing import Any, Dict, Literal

# Third-Party
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    """Resumable MCP server configuration.

    Every field can be overridden by an environment variable of the same name
    (case-insensitive), e.g. ``DATABASE_URL``, ``DB_POOL_SIZE``, ``LOG_LEVEL``.
    """

    app_name: str = Field(default="MCP Resume", description="Server name advertised during MCP initialization")
    host: str = Field(default="127.0.0.1", description="Interface to bind the HTTP server to")
    port: int = Field(default=3000, description="Port to bind the HTTP server to")

    # Database
    database_url: str = Field(default="sqlite:///./mcpresume.db", description="SQLAlchemy URL of the event log database")
    db_pool_size: int = Field(default=10, ge=1, description="Persistent connections kept in the pool")
    db_max_overflow: int = Field(default=10, ge=0, description="Extra connections allowed beyond db_pool_size under load")
    db_pool_timeout: int = Field(default=30, ge=1, description="Seconds to wait for a free pooled connection")
    db_pool_recycle: int = Field(default=1800, description="Seconds after which idle pooled connections are recycled")
    db_pool_pre_ping: bool = Field(default=True, description="Test connections for liveness on checkout")
    db_auto_create_schema: bool = Field(default=True, description="Create the event table and index at startup if absent")

    # Event log / transport
    event_replay_batch_size: int = Field(default=500, ge=1, description="Rows fetched per page while replaying a stream")
    json_response_enabled: bool = Field(default=False, description="Answer POST requests with JSON instead of an SSE stream")
    session_tombstone_limit: int = Field(default=10000, ge=0, description="Closed session ids remembered to refuse reuse")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log line format")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Normalise the log level and reject unknown names.

        Args:
            v: Raw log level value.

        Returns:
            str: Upper-cased level name.

        Raises:
            ValueError: If the level is not a standard logging level.

        Examples:
            >>> Settings.validate_log_level("debug")
            'DEBUG'
            >>> Settings.validate_log_level("loud")
            Traceback (most recent call last):
            ...
            ValueError: Invalid log level: loud
        """
        level = str(v).strip().upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite.

        Returns:
            bool: True for ``sqlite`` URLs.
        """
        return self.database_url.startswith("sqlite")

    @property
    def database_settings(self) -> Dict[str, Any]:
        """Keyword arguments for :func:`sqlalchemy.create_engine`.

        SQLite gets ``check_same_thread=False`` because store operations run in
        worker threads; pool sizing only applies to networked databases.

        Returns:
            Dict[str, Any]: Engine options.
        """
        if self.is_sqlite:
            return {"connect_args": {"check_same_thread": False}, "pool_pre_ping": self.db_pool_pre_ping}
        return {
            "connect_args": {},
            "pool_size": self.db_pool_size,
            "max_overflow": self.db_max_overflow,
            "pool_timeout": self.db_pool_timeout,
            "pool_recycle": self.db_pool_recycle,
            "pool_pre_ping": self.db_pool_pre_ping,
        }

    @property
    def log_level_value(self) -> int:
        """Numeric logging level.

        Returns:
            int: Value usable with :meth:`logging.Logger.setLevel`.
        """
        return logging.getLevelName(self.log_level)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The process-wide configuration.

    Examples:
        >>> get_settings() is get_settings()
        True
    """
    return Settings()


settings = get_settings()
