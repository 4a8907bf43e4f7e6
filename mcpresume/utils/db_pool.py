# -*- coding: utf-8 -*-
"""Location: ./mcpresume/utils/db_pool.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared database pool manager.

This module owns the single SQLAlchemy engine (and therefore the connection
pool) used by the event log. The engine is created lazily on first use, is
dropped when the driver reports a disconnect so the next caller reconnects,
and is disposed once on shutdown.

Usage:
    from mcpresume.utils.db_pool import DatabasePoolManager

    pool = DatabasePoolManager(settings.database_url, settings.database_settings)
    engine = await pool.acquire()
    ...
    await pool.shutdown()

After ``shutdown()`` the manager stays closed: ``acquire()`` raises
StorageUnavailableError instead of reconnecting.
"""

# Standard
import asyncio
import logging
import threading
from typing import Any, Dict, Optional

# Third-Party
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, ExceptionContext
from sqlalchemy.exc import SQLAlchemyError

# First-Party
from mcpresume.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


class DatabasePoolManager:
    """Lazily established, fault-recoverable handle on the shared engine.

    Thread-Safety:
        ``acquire`` and ``shutdown`` are coroutines serialised by an
        asyncio.Lock, so concurrent first callers share one engine.
        ``invalidate`` is synchronous and guarded by a threading.Lock because
        it is called from SQLAlchemy error hooks running in worker threads.

    Examples:
        >>> import asyncio
        >>> pool = DatabasePoolManager("sqlite://")
        >>> engine = asyncio.run(pool.acquire())
        >>> engine.dialect.name
        'sqlite'
        >>> asyncio.run(pool.shutdown())
        >>> pool.is_shut_down
        True
    """

    def __init__(self, database_url: str, engine_options: Optional[Dict[str, Any]] = None):
        """Initialize the manager without connecting.

        Args:
            database_url: SQLAlchemy database URL.
            engine_options: Extra keyword arguments for ``create_engine``.
        """
        self._database_url = database_url
        self._engine_options = dict(engine_options or {})
        self._engine: Optional[Engine] = None
        self._lock = asyncio.Lock()
        self._swap_lock = threading.Lock()
        self._shut_down = False

    @property
    def is_shut_down(self) -> bool:
        """Whether ``shutdown`` has been called.

        Returns:
            bool: True once the manager is closed for good.
        """
        return self._shut_down

    async def acquire(self) -> Engine:
        """Return the shared engine, creating it on first use.

        Returns:
            Engine: Connected SQLAlchemy engine.

        Raises:
            StorageUnavailableError: If the manager is shut down or the database cannot be reached.
        """
        if self._shut_down:
            raise StorageUnavailableError("Database pool has been shut down")

        engine = self._engine
        if engine is not None:
            return engine

        async with self._lock:
            if self._shut_down:
                raise StorageUnavailableError("Database pool has been shut down")
            if self._engine is None:
                self._engine = await asyncio.to_thread(self._connect)
            return self._engine

    def _connect(self) -> Engine:
        """Create the engine and verify the database answers.

        Returns:
            Engine: The new engine.

        Raises:
            StorageUnavailableError: If the liveness probe fails.
        """
        logger.info("Creating database connection pool")
        try:
            engine = create_engine(self._database_url, **self._engine_options)
        except (SQLAlchemyError, ImportError) as e:
            logger.error(f"Invalid database configuration: {e}")
            raise StorageUnavailableError(f"Cannot create database engine: {e}") from e

        event.listen(engine, "handle_error", self._make_error_listener(engine))

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database connection failed: {e}")
            engine.dispose()
            raise StorageUnavailableError(f"Cannot connect to database: {e}") from e

        logger.info(f"Database connection pool ready (dialect={engine.dialect.name})")
        return engine

    def _make_error_listener(self, engine: Engine):
        """Build a ``handle_error`` hook bound to one engine.

        Args:
            engine: Engine the hook is attached to.

        Returns:
            Callable: Listener that invalidates the pool on disconnects.
        """

        def _on_error(context: ExceptionContext) -> None:
            if context.is_disconnect:
                logger.error(f"Database pool error, dropping pool: {context.original_exception}")
                self.invalidate(engine)

        return _on_error

    def invalidate(self, engine: Optional[Engine] = None) -> None:
        """Drop the cached engine so the next ``acquire`` reconnects.

        In-flight operations on the old engine are not retried; they fail
        and surface to their callers.

        Args:
            engine: Only invalidate if this is still the cached engine.
        """
        with self._swap_lock:
            current = self._engine
            if current is None or (engine is not None and engine is not current):
                return
            self._engine = None
        current.dispose()
        logger.info("Database connection pool invalidated")

    async def ping(self) -> bool:
        """Check the database answers a trivial query.

        Returns:
            bool: True if ``SELECT 1`` succeeds.
        """
        try:
            engine = await self.acquire()
        except StorageUnavailableError:
            return False

        def _probe() -> None:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

        try:
            await asyncio.to_thread(_probe)
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    async def shutdown(self) -> None:
        """Close the pool. Safe to call more than once."""
        async with self._lock:
            self._shut_down = True
            with self._swap_lock:
                engine, self._engine = self._engine, None
            if engine is None:
                return
            logger.info("Closing database connection pool")
            await asyncio.to_thread(engine.dispose)
            logger.info("Database connection pool closed")
