# -*- coding: utf-8 -*-
"""Location: ./mcpresume/main.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP Resume - main FastAPI application.

Wires the process-wide components together once at import time:

- ``pool_manager``: owner of the shared SQLAlchemy engine
- ``event_log``: durable event log on top of the pool
- ``session_registry``: live sessions of this process
- ``streamable_http_handler``: ASGI endpoint serving ``/mcp``

The lifespan hook bootstraps the schema on startup. On shutdown, which Uvicorn
and Gunicorn trigger on SIGTERM or SIGINT, it terminates sessions and closes
the pool exactly once.
"""

# Standard
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator

# Third-Party
from fastapi import FastAPI

# First-Party
from mcpresume import __version__
from mcpresume.cache.session_registry import SessionRegistry
from mcpresume.config import settings
from mcpresume.errors import EventStoreError
from mcpresume.server import build_server
from mcpresume.services.event_log_service import EventLogStore
from mcpresume.services.logging_service import LoggingService
from mcpresume.transports.persistent_event_store import PersistentEventStore
from mcpresume.transports.streamablehttp_transport import StreamableHTTPHandler
from mcpresume.utils.db_pool import DatabasePoolManager
from mcpresume.utils.orjson_response import ORJSONResponse

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

pool_manager = DatabasePoolManager(settings.database_url, settings.database_settings)
event_log = EventLogStore(pool_manager, batch_size=settings.event_replay_batch_size)
session_registry = SessionRegistry(tombstone_limit=settings.session_tombstone_limit)
streamable_http_handler = StreamableHTTPHandler(
    session_registry,
    partial(PersistentEventStore, event_log),
    build_server,
    json_response=settings.json_response_enabled,
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Start and stop process-wide resources.

    Args:
        _app: The FastAPI application.

    Yields:
        None: While the application serves requests.

    Raises:
        EventStoreError: If the schema cannot be ensured at startup.
    """
    logging_service.configure()
    logger.info(f"Starting {settings.app_name} v{__version__}")

    if settings.db_auto_create_schema:
        try:
            await event_log.ensure_schema()
        except EventStoreError as e:
            logger.error(f"Failed to prepare the event log: {e}")
            await pool_manager.shutdown()
            raise

    await streamable_http_handler.initialize()
    logger.info(f"{settings.app_name} listening on {settings.host}:{settings.port}, MCP endpoint /mcp")
    try:
        yield
    finally:
        logger.info(f"Shutting down {settings.app_name}")
        await streamable_http_handler.shutdown()
        await pool_manager.shutdown()


app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
app.add_route("/mcp", streamable_http_handler, methods=["GET", "POST", "DELETE"], include_in_schema=False)


@app.get("/health")
async def health() -> ORJSONResponse:
    """Report liveness of the event log database.

    Returns:
        ORJSONResponse: 200 when the database answers, 503 otherwise.
    """
    database_ok = await pool_manager.ping()
    content = {
        "status": "healthy" if database_ok else "unhealthy",
        "database": "ok" if database_ok else "unavailable",
        "active_sessions": session_registry.active_count,
    }
    return ORJSONResponse(content=content, status_code=200 if database_ok else 503)
