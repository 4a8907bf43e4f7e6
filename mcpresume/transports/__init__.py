# -*- coding: utf-8 -*-
"""Location: ./mcpresume/transports/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP transport glue: event-store adapter and resumable HTTP transport.
"""
