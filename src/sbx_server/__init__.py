"""
sbx_server package

This package contains the SandboxManager server implementation (FastAPI service)
and the workspace provisioning/lifecycle core it exposes. It is intentionally
lightweight at import time and avoids importing the FastAPI app by default to
prevent side effects during module discovery or tooling.

Public surface:
- __version__: string version of the server package
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
