# -*- coding: utf-8 -*-
"""Location: ./mcpresume/transports/persistent_event_store.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Database-backed event store for Streamable HTTP stateful sessions.

Adapts the MCP SDK ``EventStore`` interface onto :class:`EventLogStore`:
messages are serialized with orjson on the way in and validated back into
``JSONRPCMessage`` objects on replay. A stored payload that no longer decodes
is skipped rather than aborting the replay.

The SDK names streams after request ids (``"1"``, ``"2"``) and a fixed key for
the standalone GET stream, so the same names recur in every session. Each
session therefore gets its own store handle, which persists under
``<len(session_id)>:<session_id>:<sdk stream id>`` and refuses cursors that
belong to another session.
"""

# Standard
import logging
from typing import Any, Optional, Tuple

# Third-Party
from mcp.server.streamable_http import EventCallback, EventMessage, EventStore
from mcp.types import JSONRPCMessage
import orjson
from pydantic import TypeAdapter, ValidationError

# First-Party
from mcpresume.errors import EventIntegrityError, PersistenceError
from mcpresume.services.event_log_service import EventLogStore, extract_stream_id

logger = logging.getLogger(__name__)

_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(JSONRPCMessage)


def session_stream_id(session_id: str, stream_id: str) -> str:
    """Scope an SDK stream id to one session.

    Args:
        session_id: Owning session.
        stream_id: Stream id chosen by the SDK transport.

    Returns:
        str: Stream id stored in the event log.

    Examples:
        >>> session_stream_id("ab12", "_GET_stream")
        '4:ab12:_GET_stream'
    """
    return f"{len(session_id)}:{session_id}:{stream_id}"


def split_session_stream_id(stored: str) -> Optional[Tuple[str, str]]:
    """Split a stored stream id into session id and SDK stream id.

    Args:
        stored: Stream id as kept in the event log.

    Returns:
        Optional[Tuple[str, str]]: ``(session_id, stream_id)``, or None if
        the value was not written by a session-scoped store.

    Examples:
        >>> split_session_stream_id("4:ab12:1")
        ('ab12', '1')
        >>> split_session_stream_id("5:a:b:c:d")
        ('a:b:c', 'd')
        >>> split_session_stream_id("plain") is None
        True
    """
    head, sep, rest = stored.partition(":")
    if not sep or not head.isdigit():
        return None
    length = int(head)
    if len(rest) <= length or rest[length] != ":":
        return None
    return rest[:length], rest[length + 1 :]


def serialize_message(message: Any) -> str:
    """Serialize a JSON-RPC message for storage.

    Args:
        message: Pydantic message, plain dict, or None for priming events.

    Returns:
        str: JSON text.

    Raises:
        PersistenceError: If the message cannot be serialized.

    Examples:
        >>> serialize_message({"jsonrpc": "2.0", "method": "ping", "id": 1})
        '{"jsonrpc":"2.0","method":"ping","id":1}'
        >>> serialize_message(None)
        'null'
    """
    # Convert message to dict for serialization (Pydantic model -> dict)
    if message is None:
        message_dict = None
    elif hasattr(message, "model_dump"):
        message_dict = message.model_dump(by_alias=True, mode="json", exclude_none=True)
    else:
        message_dict = dict(message)
    try:
        return orjson.dumps(message_dict).decode()
    except TypeError as e:
        raise PersistenceError(f"Cannot serialize message: {e}") from e


def deserialize_message(event_id: str, payload: str) -> Optional[JSONRPCMessage]:
    """Decode a stored payload back into a JSON-RPC message.

    Args:
        event_id: Id of the event, for error reporting.
        payload: Stored JSON text.

    Returns:
        Optional[JSONRPCMessage]: The message, or None for priming events.

    Raises:
        EventIntegrityError: If the payload is not a valid JSON-RPC message.

    Examples:
        >>> msg = deserialize_message("e1", '{"jsonrpc":"2.0","method":"ping","id":1}')
        >>> msg.root.method
        'ping'
        >>> deserialize_message("e2", "null") is None
        True
        >>> deserialize_message("e3", "{oops")
        Traceback (most recent call last):
        ...
        mcpresume.errors.EventIntegrityError: Event e3 is corrupt: invalid JSON
    """
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise EventIntegrityError(event_id, "invalid JSON") from e
    if data is None:
        return None
    try:
        return _MESSAGE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise EventIntegrityError(event_id, "not a JSON-RPC message") from e


class PersistentEventStore(EventStore):
    """SQL-backed event store handle bound to one session."""

    def __init__(self, event_log: EventLogStore, session_id: str):
        """Initialize the adapter.

        Args:
            event_log: The durable log events are written to.
            session_id: Session whose streams this handle reads and writes.
        """
        self.event_log = event_log
        self.session_id = session_id

    async def store_event(self, stream_id: str, message: JSONRPCMessage | None) -> str:
        """Store an event.

        Args:
            stream_id: Stream identifier chosen by the SDK transport.
            message: JSON-RPC message to store (None for priming events).

        Returns:
            Unique event_id for this event.
        """
        return await self.event_log.append(session_stream_id(self.session_id, stream_id), serialize_message(message))

    async def replay_events_after(self, last_event_id: str, send_callback: EventCallback) -> str | None:
        """Replay events after a specific event_id.

        Args:
            last_event_id: Event ID to replay from.
            send_callback: Async callback to receive replayed messages.

        Returns:
            The SDK stream_id if found, None if the cursor is unusable,
            unknown, or belongs to another session.
        """
        owner = split_session_stream_id(extract_stream_id(last_event_id))
        if owner is None or owner[0] != self.session_id:
            logger.info(f"Session {self.session_id} cannot resume from event {last_event_id!r}: not one of its streams")
            return None

        async def _deliver(event_id: str, payload: str) -> None:
            message = deserialize_message(event_id, payload)
            if message is None:
                return
            await send_callback(EventMessage(message, event_id))

        stored_stream_id = await self.event_log.replay_after(last_event_id, _deliver)
        return owner[1] if stored_stream_id else None
