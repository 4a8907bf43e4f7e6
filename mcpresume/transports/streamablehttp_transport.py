# -*- coding: utf-8 -*-
"""Location: ./mcpresume/transports/streamablehttp_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Streamable HTTP Transport Implementation.
This module routes MCP Streamable HTTP requests to per-session transports.

A POST without an ``mcp-session-id`` header must carry an ``initialize``
request; it gets a fresh session from the :class:`SessionRegistry` and a
:class:`ResumableHTTPTransport` bound to the shared persistent event store.
Every other request must name a live session. Unknown or closed session ids
are rejected with 400 and are never silently re-initialized. Clients resume a
dropped stream by sending GET with ``Last-Event-ID``; the SDK transport then
replays the missed events from the event store.
"""

# Standard
from contextlib import AsyncExitStack
import logging
from typing import Any, Callable, Optional

# Third-Party
import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import EventStore, MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
import orjson
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.types import Message, Receive, Scope, Send

# First-Party
from mcpresume.cache.session_registry import SessionHooks, SessionRegistry
from mcpresume.errors import SessionNotFoundError
from mcpresume.utils.orjson_response import ORJSONResponse

logger = logging.getLogger(__name__)

# JSON-RPC error codes used at the HTTP boundary
BAD_REQUEST_CODE = -32000
INTERNAL_ERROR_CODE = -32603


class ResponseTracker:
    """ASGI ``send`` wrapper that records the response status.

    Examples:
        >>> import asyncio
        >>> sent = []
        >>> async def send(message):
        ...     sent.append(message)
        >>> tracker = ResponseTracker(send)
        >>> asyncio.run(tracker({"type": "http.response.start", "status": 202, "headers": []}))
        >>> tracker.status, tracker.started
        (202, True)
    """

    def __init__(self, send: Send):
        """Wrap a send callable.

        Args:
            send: Downstream ASGI send.
        """
        self._send = send
        self.status: Optional[int] = None

    @property
    def started(self) -> bool:
        """Whether the response head has been sent.

        Returns:
            bool: True once ``http.response.start`` went out.
        """
        return self.status is not None

    async def __call__(self, message: Message) -> None:
        """Forward a message, capturing the status line.

        Args:
            message: ASGI message.
        """
        if message["type"] == "http.response.start":
            self.status = message["status"]
        await self._send(message)


def is_initialize_request(body: Any) -> bool:
    """Check whether a parsed POST body is an MCP ``initialize`` request.

    Args:
        body: Parsed JSON body.

    Returns:
        bool: True for a single JSON-RPC request with method ``initialize``.

    Examples:
        >>> is_initialize_request({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
        True
        >>> is_initialize_request({"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        False
        >>> is_initialize_request([{"method": "initialize"}])
        False
    """
    return isinstance(body, dict) and body.get("jsonrpc") == "2.0" and body.get("method") == "initialize" and "id" in body


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Build a receive callable that yields an already-read body first.

    Args:
        body: Request body consumed while inspecting the request.
        receive: Original ASGI receive, used after the body is replayed.

    Returns:
        Receive: Replaying receive callable.
    """
    replayed = False

    async def _receive() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


class ResumableHTTPTransport:
    """One MCP session: an SDK Streamable HTTP transport plus its server loop.

    The session's ``on_initialized`` hook fires once, after the first request
    completes with a non-error status. The ``on_closed`` hook fires exactly
    once, when the server loop exits (DELETE, ``terminate`` or a crash).
    """

    def __init__(self, session_id: str, server: Server, event_store: EventStore, hooks: SessionHooks, json_response: bool = False):
        """Initialize the transport.

        Args:
            session_id: Session id minted by the registry.
            server: MCP server run for this session.
            event_store: Event store handle of this session.
            hooks: Registry lifecycle callbacks.
            json_response: Answer POSTs with JSON instead of SSE.
        """
        self.session_id = session_id
        self._server = server
        self._hooks = hooks
        self._http = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
            event_store=event_store,
        )
        self._initialized = False
        self._closed = False

    @property
    def is_initialized(self) -> bool:
        """Whether the session finished initialization.

        Returns:
            bool: True after ``on_initialized`` fired.
        """
        return self._initialized

    @property
    def is_closed(self) -> bool:
        """Whether the close hook has fired.

        Returns:
            bool: True once the server loop has exited.
        """
        return self._closed

    async def start(self, task_group: TaskGroup) -> None:
        """Start the MCP server loop for this session.

        Args:
            task_group: Long-lived task group owning session loops.
        """
        await task_group.start(self._run_server)

    async def _run_server(self, *, task_status: TaskStatus = anyio.TASK_STATUS_IGNORED) -> None:
        """Run the server over the transport streams until the session ends.

        Args:
            task_status: Signalled once the streams are connected.
        """
        try:
            async with self._http.connect() as (read_stream, write_stream):
                task_status.started()
                await self._server.run(read_stream, write_stream, self._server.create_initialization_options(), stateless=False)
        except Exception:
            logger.exception(f"MCP server loop crashed for session {self.session_id}")
        finally:
            with anyio.CancelScope(shield=True):
                await self._notify_closed()

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Handle one HTTP request for this session.

        Args:
            scope: ASGI scope.
            receive: ASGI receive.
            send: ASGI send.
        """
        tracker = ResponseTracker(send)
        try:
            await self._http.handle_request(scope, receive, tracker)
        finally:
            if not self._initialized:
                await self._finish_initialization(tracker)
            elif self._http.is_terminated:
                # DELETE: deregister now rather than when the server loop unwinds
                await self._notify_closed()

    async def _finish_initialization(self, tracker: ResponseTracker) -> None:
        """Register the session, or tear it down if initialization failed.

        Args:
            tracker: Response tracker of the initialize request.
        """
        if tracker.status is not None and tracker.status < 400 and not self._http.is_terminated:
            self._initialized = True
            await self._hooks.on_initialized(self)
            return
        logger.warning(f"Initialization failed for session {self.session_id} (status={tracker.status}), terminating")
        await self.terminate()

    async def terminate(self) -> None:
        """Terminate the session; the server loop then exits and fires the close hook."""
        if not self._http.is_terminated:
            await self._http.terminate()

    async def _notify_closed(self) -> None:
        """Fire the close hook once."""
        if self._closed:
            return
        self._closed = True
        await self._hooks.on_closed()


class StreamableHTTPHandler:
    """ASGI endpoint dispatching ``/mcp`` requests to session transports.

    ``initialize`` must be awaited before serving and ``shutdown`` on exit;
    between the two the handler owns the task group running session loops.
    """

    def __init__(self, registry: SessionRegistry, event_store_factory: Callable[[str], EventStore], server_factory: Callable[[], Server], json_response: bool = False):
        """Initialize the handler.

        Args:
            registry: Session registry.
            event_store_factory: Builds the event store handle of a new session from its id.
            server_factory: Builds the MCP server run by sessions.
            json_response: Answer POSTs with JSON instead of SSE.
        """
        self.registry = registry
        self._event_store_factory = event_store_factory
        self._server_factory = server_factory
        self._server: Optional[Server] = None
        self._json_response = json_response
        self._stack: Optional[AsyncExitStack] = None
        self._task_group: Optional[TaskGroup] = None

    async def initialize(self) -> None:
        """Start the task group hosting session server loops."""
        logger.info("Initializing Streamable HTTP handler")
        self._server = self._server_factory()
        self._stack = AsyncExitStack()
        self._task_group = await self._stack.enter_async_context(anyio.create_task_group())

    async def shutdown(self) -> None:
        """Terminate all sessions and stop the task group."""
        logger.info("Stopping Streamable HTTP handler")
        await self.registry.shutdown()
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._task_group = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI entry point.

        Args:
            scope: ASGI scope.
            receive: ASGI receive.
            send: ASGI send.
        """
        await self.handle_streamable_http(scope, receive, send)

    async def handle_streamable_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Route a request to an existing session or start a new one.

        Args:
            scope: ASGI scope.
            receive: ASGI receive.
            send: ASGI send.
        """
        request = Request(scope, receive)
        client = request.client.host if request.client else "unknown"
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        logger.debug(f"[{client}] Received {request.method} /mcp request (session={session_id})")

        payload = None
        if request.method == "POST":
            body = await request.body()
            try:
                payload = orjson.loads(body) if body else None
            except orjson.JSONDecodeError:
                payload = None
            # The SDK transport reads the body again
            receive = _replay_body(body, receive)
        request_id = payload.get("id") if isinstance(payload, dict) else None

        if session_id:
            try:
                transport = await self.registry.resolve(session_id)
            except SessionNotFoundError:
                logger.info(f"[{client}] Rejecting {request.method} for invalid session {session_id}")
                await self._bad_request(request.method, request_id, scope, receive, send)
                return
            await self._dispatch(transport, scope, receive, send, request_id=request_id)
            return

        if request.method != "POST":
            logger.info(f"[{client}] {request.method} request without session id")
            await self._bad_request(request.method, None, scope, receive, send)
            return

        if not is_initialize_request(payload):
            logger.info(f"[{client}] POST without session id is not an initialization request")
            await self._bad_request("POST", request_id, scope, receive, send)
            return

        session_id, transport = await self.registry.create(self._build_transport)
        logger.info(f"[{client}] New initialization request, session {session_id}")
        await self._dispatch(transport, scope, receive, send, request_id=request_id)

    async def _build_transport(self, session_id: str, hooks: SessionHooks) -> ResumableHTTPTransport:
        """Transport factory handed to the registry.

        Args:
            session_id: New session id.
            hooks: Registry lifecycle callbacks.

        Returns:
            ResumableHTTPTransport: Started transport.

        Raises:
            RuntimeError: If the handler has not been initialized.
        """
        if self._task_group is None or self._server is None:
            raise RuntimeError("StreamableHTTPHandler is not initialized")
        transport = ResumableHTTPTransport(session_id, self._server, self._event_store_factory(session_id), hooks, json_response=self._json_response)
        await transport.start(self._task_group)
        return transport

    async def _dispatch(self, transport: ResumableHTTPTransport, scope: Scope, receive: Receive, send: Send, request_id: Any = None) -> None:
        """Hand a request to a transport, turning crashes into 500s.

        Args:
            transport: Session transport.
            scope: ASGI scope.
            receive: ASGI receive.
            send: ASGI send.
            request_id: JSON-RPC id echoed in error responses.
        """
        tracker = ResponseTracker(send)
        try:
            await transport.handle_request(scope, receive, tracker)
        except Exception:
            logger.exception(f"Error handling request for session {transport.session_id}")
            if not tracker.started:
                response = ORJSONResponse(
                    status_code=500,
                    content={"jsonrpc": "2.0", "error": {"code": INTERNAL_ERROR_CODE, "message": "Internal Server Error"}, "id": request_id},
                )
                await response(scope, receive, tracker)

    @staticmethod
    async def _bad_request(method: str, request_id: Any, scope: Scope, receive: Receive, send: Send) -> None:
        """Send the 400 reply for missing or invalid session ids.

        Args:
            method: HTTP method of the rejected request.
            request_id: JSON-RPC id echoed in the error.
            scope: ASGI scope.
            receive: ASGI receive.
            send: ASGI send.
        """
        if method == "POST":
            response = ORJSONResponse(
                status_code=400,
                content={
                    "jsonrpc": "2.0",
                    "error": {"code": BAD_REQUEST_CODE, "message": "Bad Request: No valid session ID provided or not an initialization request."},
                    "id": request_id,
                },
            )
        else:
            response = PlainTextResponse("Invalid or missing session ID", status_code=400)
        await response(scope, receive, send)
