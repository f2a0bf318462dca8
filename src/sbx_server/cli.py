"""Command-line entry points for sbx_server."""

from __future__ import annotations

import sys

from uvicorn.main import main as uvicorn_main


def main() -> None:
    """Delegate to uvicorn's CLI entry point.

    Usage: ``sandbox-manager sbx_server.app.main:app --host 0.0.0.0 --port 8090``
    """

    sys.exit(uvicorn_main())
