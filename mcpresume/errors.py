# -*- coding: utf-8 -*-
"""Location: ./mcpresume/errors.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Error taxonomy for the event log and the session registry.

Storage faults are split into two kinds. StorageUnavailableError is transient:
the pool could not be reached, and the caller may retry after backoff.
PersistenceError is not: a reachable database rejected the operation.

Examples:
    >>> from sqlalchemy.exc import IntegrityError, OperationalError
    >>> err = translate_db_error(OperationalError("SELECT 1", {}, Exception("down")), "append")
    >>> isinstance(err, StorageUnavailableError)
    True
    >>> err = translate_db_error(IntegrityError("INSERT", {}, Exception("dup")), "append")
    >>> isinstance(err, PersistenceError)
    True
"""

# Third-Party
from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError


class MCPResumeError(Exception):
    """Base class for all mcpresume errors."""


class EventStoreError(MCPResumeError):
    """Base class for event log failures."""


class StorageUnavailableError(EventStoreError):
    """The database pool or connection cannot be reached."""


class PersistenceError(EventStoreError):
    """A read or write against a reachable database failed."""


class EventIntegrityError(EventStoreError):
    """A stored payload could not be decoded.

    Raised by replay delivery callbacks; the replay loop skips the event and
    carries on.

    Examples:
        >>> err = EventIntegrityError("evt-1", "bad json")
        >>> err.event_id
        'evt-1'
        >>> str(err)
        'Event evt-1 is corrupt: bad json'
    """

    def __init__(self, event_id: str, reason: str):
        """Initialize the error.

        Args:
            event_id: Id of the undecodable event.
            reason: Human readable cause.
        """
        super().__init__(f"Event {event_id} is corrupt: {reason}")
        self.event_id = event_id
        self.reason = reason


class SessionNotFoundError(MCPResumeError):
    """The session id is unknown, not yet initialized, or closed.

    Examples:
        >>> str(SessionNotFoundError("abc"))
        'Session not found: abc'
    """

    def __init__(self, session_id: str):
        """Initialize the error.

        Args:
            session_id: The id that failed to resolve.
        """
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


def translate_db_error(exc: SQLAlchemyError, operation: str) -> EventStoreError:
    """Map a SQLAlchemy exception onto the event store taxonomy.

    Args:
        exc: The exception raised by SQLAlchemy.
        operation: Short name of the failed operation, used in the message.

    Returns:
        EventStoreError: StorageUnavailableError for connectivity faults, PersistenceError otherwise.
    """
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return StorageUnavailableError(f"Database unavailable during {operation}: {exc}")
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StorageUnavailableError(f"Database connection lost during {operation}: {exc}")
    return PersistenceError(f"Database error during {operation}: {exc}")
