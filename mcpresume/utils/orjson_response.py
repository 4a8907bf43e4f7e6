# -*- coding: utf-8 -*-
"""Location: ./mcpresume/utils/orjson_response.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

JSON response class rendered with orjson.

Examples:
    >>> ORJSONResponse({"ok": True}).body
    b'{"ok":true}'
"""

# Standard
from typing import Any

# Third-Party
import orjson
from starlette.responses import JSONResponse


class ORJSONResponse(JSONResponse):
    """JSONResponse using orjson for serialization."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        """Serialize content.

        Args:
            content: JSON-compatible content.

        Returns:
            bytes: Encoded body.
        """
        return orjson.dumps(content, option=orjson.OPT_NON_STR_KEYS)
