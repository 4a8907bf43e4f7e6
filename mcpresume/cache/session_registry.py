# -*- coding: utf-8 -*-
"""Location: ./mcpresume/cache/session_registry.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Session Registry for stateful Streamable HTTP sessions.
This module maps server-minted session ids to the in-process transport object
serving each session.

Each session moves through ``UNINITIALIZED -> ACTIVE -> CLOSED``:

- ``create`` mints an id and builds the transport, but the mapping is only
  stored when the transport reports a successful initialization through its
  ``on_initialized`` hook.
- The transport's ``on_closed`` hook removes the entry. Closed ids are
  remembered (up to a bound) so that a late initialization callback cannot
  resurrect them and a new session can never be handed the same id.

Examples:
    >>> import asyncio
    >>> from mcpresume.cache.session_registry import SessionRegistry, SessionState
    >>> class DummyTransport:
    ...     def __init__(self, session_id, hooks):
    ...         self.session_id = session_id
    ...         self.hooks = hooks
    >>> async def factory(session_id, hooks):
    ...     return DummyTransport(session_id, hooks)
    >>> async def demo():
    ...     reg = SessionRegistry()
    ...     sid, transport = await reg.create(factory)
    ...     pending = reg.state(sid)
    ...     await transport.hooks.on_initialized(transport)
    ...     found = await reg.resolve(sid)
    ...     await transport.hooks.on_closed()
    ...     return pending, found is transport, reg.state(sid)
    >>> asyncio.run(demo())
    (<SessionState.UNINITIALIZED: 'uninitialized'>, True, <SessionState.CLOSED: 'closed'>)
"""

# Standard
import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
import uuid

# First-Party
from mcpresume.errors import SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a session."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionHooks:
    """Lifecycle callbacks handed to a transport, bound to one session id."""

    session_id: str
    on_initialized: Callable[[Any], Awaitable[None]]
    on_closed: Callable[[], Awaitable[None]]


TransportFactory = Callable[[str, SessionHooks], Awaitable[Any]]


def _default_session_id() -> str:
    """Generate a session id.

    Returns:
        str: 32 lowercase hex characters.
    """
    return uuid.uuid4().hex


class SessionRegistry:
    """In-memory table of live sessions.

    Attributes:
        _sessions: Session id -> transport, for ACTIVE sessions only.
        _pending: Ids minted by ``create`` that have not initialized yet.
        _closed: Bounded, insertion-ordered set of closed ids.
        _lock: Guards all three collections.
    """

    def __init__(self, id_generator: Optional[Callable[[], str]] = None, tombstone_limit: int = 10000):
        """Initialize an empty registry.

        Args:
            id_generator: Session id factory; uuid4 hex by default.
            tombstone_limit: Maximum number of closed ids remembered.
        """
        self._id_generator = id_generator or _default_session_id
        self._tombstone_limit = tombstone_limit
        self._sessions: Dict[str, Any] = {}
        self._pending: set = set()
        self._closed: "OrderedDict[str, None]" = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def active_count(self) -> int:
        """Number of ACTIVE sessions.

        Returns:
            int: Count of registered transports.
        """
        return len(self._sessions)

    def state(self, session_id: str) -> Optional[SessionState]:
        """Return the lifecycle state of a session id.

        Args:
            session_id: Session to inspect.

        Returns:
            Optional[SessionState]: State, or None if the id was never seen (or its tombstone aged out).
        """
        if session_id in self._sessions:
            return SessionState.ACTIVE
        if session_id in self._pending:
            return SessionState.UNINITIALIZED
        if session_id in self._closed:
            return SessionState.CLOSED
        return None

    async def resolve(self, session_id: str) -> Any:
        """Look up the transport of an active session.

        Args:
            session_id: Session identifier presented by the client.

        Returns:
            Any: The session's transport.

        Raises:
            SessionNotFoundError: If the session is unknown, not yet initialized, or closed.
        """
        async with self._lock:
            transport = self._sessions.get(session_id)
        if transport is None:
            logger.info(f"Session {session_id} not found")
            raise SessionNotFoundError(session_id)
        return transport

    async def create(self, transport_factory: TransportFactory) -> Tuple[str, Any]:
        """Mint a session id and build its transport.

        The session is registered later, when the transport calls
        ``hooks.on_initialized``.

        Args:
            transport_factory: ``async (session_id, hooks) -> transport``.

        Returns:
            Tuple[str, Any]: The new session id and its transport.

        Raises:
            Exception: Whatever the factory raises; the minted id is retired.
        """
        async with self._lock:
            session_id = self._id_generator()
            while session_id in self._sessions or session_id in self._pending or session_id in self._closed:
                session_id = self._id_generator()
            self._pending.add(session_id)

        hooks = SessionHooks(
            session_id=session_id,
            on_initialized=lambda transport: self._activate(session_id, transport),
            on_closed=lambda: self._on_transport_closed(session_id),
        )
        try:
            transport = await transport_factory(session_id, hooks)
        except Exception:
            logger.exception(f"Transport creation failed for session {session_id}")
            await self.remove(session_id)
            raise

        logger.info(f"Created session {session_id}, awaiting initialization")
        return session_id, transport

    async def remove(self, session_id: str) -> bool:
        """Remove a session and retire its id.

        Idempotent: removing an absent or already closed session is a no-op.

        Args:
            session_id: Session to remove.

        Returns:
            bool: True if an active or pending entry was removed.
        """
        async with self._lock:
            transport = self._sessions.pop(session_id, None)
            was_pending = session_id in self._pending
            self._pending.discard(session_id)
            if transport is None and not was_pending:
                return False
            self._tombstone(session_id)

        logger.info(f"Removed session: {session_id}")
        return True

    async def shutdown(self) -> None:
        """Terminate every active transport.

        Transports are terminated outside the lock; their close hooks then
        deregister them.
        """
        async with self._lock:
            transports = list(self._sessions.items())

        logger.info(f"Shutting down session registry ({len(transports)} active sessions)")
        for session_id, transport in transports:
            try:
                await transport.terminate()
            except Exception as e:
                logger.error(f"Error terminating transport for session {session_id}: {e}")
            await self.remove(session_id)

    async def _activate(self, session_id: str, transport: Any) -> None:
        """Move a pending session to ACTIVE.

        Args:
            session_id: Session that finished initializing.
            transport: Its transport.
        """
        async with self._lock:
            if session_id not in self._pending:
                logger.warning(f"Ignoring initialization of session {session_id}: not pending (state={self.state(session_id)})")
                return
            self._pending.discard(session_id)
            self._sessions[session_id] = transport
        logger.info(f"Session initialized: {session_id}")

    async def _on_transport_closed(self, session_id: str) -> None:
        """Close observer wired into every transport.

        Args:
            session_id: Session whose transport closed.
        """
        logger.info(f"Transport closed for session {session_id}, cleaning up")
        await self.remove(session_id)

    def _tombstone(self, session_id: str) -> None:
        """Remember a closed id. Caller holds the lock.

        Args:
            session_id: Id to retire.
        """
        if self._tombstone_limit <= 0:
            return
        self._closed[session_id] = None
        self._closed.move_to_end(session_id)
        while len(self._closed) > self._tombstone_limit:
            self._closed.popitem(last=False)
