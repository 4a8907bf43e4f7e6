# -*- coding: utf-8 -*-
"""Location: ./mcpresume/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP Resume - a stateful MCP Streamable HTTP server whose sessions survive
dropped connections by replaying a durable, per-stream event log.
"""

__copyright__ = "Copyright 2025"
__license__ = "Apache 2.0"
__version__ = "0.1.0"
__description__ = "Resumable MCP Streamable HTTP sessions backed by a SQL event log"
__packages__ = ["mcpresume"]
