# -*- coding: utf-8 -*-
"""

Copyright 2025
SPDX-License-Identifier: Apache-2.0

Description: GUNICORN CONFIGURATION
Reference: https://docs.gunicorn.org/en/stable/settings.html
Notes:
- Run with: gunicorn -c gunicorn.config.py mcpresume.main:app
- Sessions are held in process memory, so exactly one worker serves them;
the event log itself is shared through the database.
- The worker's lifespan shutdown (on SIGTERM/SIGINT) closes the DB pool.
"""

# First-Party
# Import Pydantic Settings singleton
from mcpresume.config import settings

# Bind to exactly what .env (or defaults) says
bind = f"{settings.host}:{settings.port}"

workers = 1  # Session registry is per process; do not raise
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 600  # Long-lived SSE streams and replays
graceful_timeout = 30  # Time for lifespan shutdown to close sessions and the pool
loglevel = settings.log_level.lower()
max_requests = 0  # Recycling the worker would drop every live session

# accesslog = '-'
# errorlog = '-'


def when_ready(server):
    """Called just after the server is started."""
    server.log.info("Server is ready. Spawning workers")


def worker_int(worker):
    """Called when a worker receives SIGINT or SIGQUIT."""
    worker.log.info("Worker received INT or QUIT signal")


def worker_exit(server, worker):
    """Called just after a worker has exited."""
    server.log.info("Worker exited (pid: %s)", worker.pid)
