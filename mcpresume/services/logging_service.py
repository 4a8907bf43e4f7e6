# -*- coding: utf-8 -*-
"""Location: ./mcpresume/services/logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Logging Service Implementation.
Configures the root logger once (stdout, JSON or text lines) and hands out
named loggers to the rest of the package.

Examples:
    >>> from mcpresume.services.logging_service import LoggingService
    >>> service = LoggingService()
    >>> service.get_logger("mcpresume.test").name
    'mcpresume.test'
"""

# Standard
from datetime import datetime, timezone
import logging
import sys
from typing import Any, Dict, Optional

# Third-Party
import orjson

# First-Party
from mcpresume.config import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    Examples:
        >>> import logging
        >>> record = logging.LogRecord("demo", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        >>> line = JSONFormatter().format(record)
        >>> import orjson
        >>> orjson.loads(line)["message"]
        'hello world'
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a record.

        Args:
            record: The record to render.

        Returns:
            str: JSON document for the record.
        """
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode()


class LoggingService:
    """Configure and hand out loggers.

    Configuration is applied to the root logger exactly once per process,
    no matter how many service instances are created.
    """

    _configured = False

    def __init__(self, level: Optional[str] = None, log_format: Optional[str] = None):
        """Initialize the service.

        Args:
            level: Override for ``settings.log_level``.
            log_format: Override for ``settings.log_format`` (``json`` or ``text``).
        """
        self._level = (level or settings.log_level).upper()
        self._format = log_format or settings.log_format

    def configure(self, force: bool = False) -> None:
        """Install the stdout handler on the root logger.

        Args:
            force: Replace an earlier configuration.
        """
        if LoggingService._configured and not force:
            return

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter() if self._format == "json" else logging.Formatter(TEXT_FORMAT))

        root = logging.getLogger()
        for existing in list(root.handlers):
            root.removeHandler(existing)
        root.addHandler(handler)
        root.setLevel(self._level)

        LoggingService._configured = True
        root.debug("Logging configured: level=%s format=%s", self._level, self._format)

    def get_logger(self, name: str) -> logging.Logger:
        """Return a named logger.

        Args:
            name: Logger name, usually ``__name__``.

        Returns:
            logging.Logger: The logger.
        """
        return logging.getLogger(name)
