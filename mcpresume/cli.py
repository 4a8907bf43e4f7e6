# -*- coding: utf-8 -*-
"""Location: ./mcpresume/cli.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

mcpresume CLI - a thin Uvicorn wrapper.

``mcpresume`` behaves exactly like ``uvicorn`` but fills in the application
path and the configured host and port when they are not given:

    mcpresume                      # uvicorn mcpresume.main:app --host <HOST> --port <PORT>
    mcpresume --port 8080          # host still injected
    mcpresume --version            # print version and exit

Sessions live in process memory, so never pass ``--workers`` greater than 1.
"""

# Standard
import sys
from typing import List

# Third-Party
import uvicorn

# First-Party
from mcpresume import __version__
from mcpresume.config import settings

DEFAULT_APP = "mcpresume.main:app"


def _needs_app(argv: List[str]) -> bool:
    """Whether the argument list lacks a positional app path.

    Args:
        argv: Arguments after the program name.

    Returns:
        bool: True if no app path was given.

    Examples:
        >>> _needs_app([])
        True
        >>> _needs_app(["--reload"])
        True
        >>> _needs_app(["pkg.app:app", "--reload"])
        False
    """
    return not argv or argv[0].startswith("-")


def _insert_defaults(argv: List[str]) -> List[str]:
    """Add the default app path, host and port where missing.

    Args:
        argv: Arguments after the program name.

    Returns:
        List[str]: Arguments passed on to Uvicorn.

    Examples:
        >>> _insert_defaults(["--host", "0.0.0.0", "--port", "9000"])
        ['mcpresume.main:app', '--host', '0.0.0.0', '--port', '9000']
    """
    args = list(argv)
    if _needs_app(args):
        args.insert(0, DEFAULT_APP)
    if "--uds" not in args:
        if "--host" not in args:
            args.extend(["--host", settings.host])
        if "--port" not in args:
            args.extend(["--port", str(settings.port)])
    return args


def main() -> None:
    """Entry point of the ``mcpresume`` console script."""
    if any(flag in sys.argv[1:] for flag in ("--version", "-V")):
        print(f"mcpresume {__version__}")
        return

    sys.argv = [sys.argv[0], *_insert_defaults(sys.argv[1:])]
    uvicorn.main()  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":  # pragma: no cover
    main()
