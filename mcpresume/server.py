# -*- coding: utf-8 -*-
"""Location: ./mcpresume/server.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP server exposed over the resumable transport.

Provides one tool (``add``) and one resource template (``greeting://{name}``).
Handlers are module-level functions so they can be tested directly.

Examples:
    >>> import asyncio
    >>> result = asyncio.run(call_tool("add", {"a": 2, "b": 3}))
    >>> result[0].text
    '5'
    >>> greeting_name("greeting://alice")
    'alice'
"""

# Standard
import logging
from typing import Any, Dict, Iterable, List
from urllib.parse import unquote, urlparse

# Third-Party
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from pydantic import AnyUrl

# First-Party
from mcpresume import __version__
from mcpresume.config import settings

logger = logging.getLogger(__name__)

GREETING_TEMPLATE = "greeting://{name}"

ADD_TOOL = types.Tool(
    name="add",
    description="Add two numbers",
    inputSchema={
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
        "required": ["a", "b"],
    },
)


def _format_number(value: float) -> str:
    """Render a sum without a trailing ``.0`` for whole numbers.

    Args:
        value: Number to render.

    Returns:
        str: Text form.

    Examples:
        >>> _format_number(5.0), _format_number(2.5)
        ('5', '2.5')
    """
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def greeting_name(uri: str) -> str:
    """Extract the name from a ``greeting://`` URI.

    Args:
        uri: Resource URI.

    Returns:
        str: Decoded name.

    Raises:
        ValueError: If the URI is not a greeting URI or has no name.
    """
    parsed = urlparse(uri)
    if parsed.scheme != "greeting":
        raise ValueError(f"Unknown resource: {uri}")
    name = unquote(parsed.netloc + parsed.path).strip("/")
    if not name:
        raise ValueError(f"Missing name in resource URI: {uri}")
    return name


async def list_tools() -> List[types.Tool]:
    """List available tools.

    Returns:
        List[types.Tool]: The ``add`` tool.
    """
    return [ADD_TOOL]


async def call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
    """Invoke a tool.

    Args:
        name: Tool name.
        arguments: Tool arguments.

    Returns:
        List[types.TextContent]: Tool output.

    Raises:
        ValueError: For unknown tools or bad arguments.
    """
    if name != ADD_TOOL.name:
        raise ValueError(f"Unknown tool: {name}")
    try:
        a, b = arguments["a"], arguments["b"]
    except KeyError as e:
        raise ValueError(f"Missing argument: {e.args[0]}") from e
    if isinstance(a, bool) or isinstance(b, bool) or not isinstance(a, (int, float)) or not isinstance(b, (int, float)):
        raise ValueError("Arguments 'a' and 'b' must be numbers")
    return [types.TextContent(type="text", text=_format_number(a + b))]


async def list_resource_templates() -> List[types.ResourceTemplate]:
    """List resource templates.

    Returns:
        List[types.ResourceTemplate]: The greeting template.
    """
    return [types.ResourceTemplate(uriTemplate=GREETING_TEMPLATE, name="greeting", mimeType="text/plain")]


async def read_resource(uri: AnyUrl) -> Iterable[ReadResourceContents]:
    """Read a greeting resource.

    Args:
        uri: Resource URI.

    Returns:
        Iterable[ReadResourceContents]: The greeting text.
    """
    name = greeting_name(str(uri))
    return [ReadResourceContents(content=f"Hello, {name} from your persistent stateful server!", mime_type="text/plain")]


def build_server() -> Server:
    """Create the MCP server with its handlers registered.

    Returns:
        Server: Low-level MCP server.
    """
    server: Server = Server(settings.app_name, version=__version__)
    server.list_tools()(list_tools)
    server.call_tool()(call_tool)
    server.list_resource_templates()(list_resource_templates)
    server.read_resource()(read_resource)
    logger.debug(f"MCP server '{settings.app_name}' built")
    return server
