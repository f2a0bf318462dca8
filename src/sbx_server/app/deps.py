from __future__ import annotations

"""
Shared FastAPI dependencies for SandboxManager.

Contents:
- get_settings(): cached accessor for ServerConfig.
- enforce_api_key(): API key authentication dependency for routes.
- get_owner_id(): caller identity from the configured owner header.
- get_workspace_service(): the process-wide workspace service, created once in
  the app lifespan and kept on app.state.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security.api_key import APIKeyHeader

from sbx_server.app.config import ServerConfig, get_settings as _config_get_settings
from sbx_server.app.workspaces.service import WorkspaceService

__all__ = [
    "get_settings",
    "enforce_api_key",
    "get_owner_id",
    "get_workspace_service",
]


def get_settings() -> ServerConfig:
    """
    Cached settings accessor. Delegates to the unified ServerConfig provider.
    """
    return _config_get_settings()


# -------------------
# API Key Auth (FastAPI)
# -------------------

api_key_header = APIKeyHeader(name=get_settings().api_key_header_name, auto_error=False)


async def enforce_api_key(
    provided_key: Optional[str] = Security(api_key_header),
    settings: ServerConfig = Depends(get_settings),
) -> None:
    """
    Enforce API key authentication using the configured header.

    - If SBX_API_KEY or SBX_API_KEYS are set, requests must provide one of them.
    - If neither is set, authentication is disabled (accept all).
    """
    allowed = {k for k in settings.api_keys if k}
    if settings.api_key:
        allowed.add(settings.api_key)
    if not allowed:
        return
    if not provided_key or provided_key not in allowed:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )


def get_owner_id(request: Request, settings: ServerConfig = Depends(get_settings)) -> str:
    """
    Caller identity as asserted by the upstream session layer.
    """
    owner = (request.headers.get(settings.owner_header_name) or "").strip()
    if not owner:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.owner_header_name} header.",
        )
    return owner


# --------------------------
# Process-wide collaborators
# --------------------------

def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is not initialized.")
    return value


def get_workspace_service(request: Request) -> WorkspaceService:
    return _state(request, "workspace_service")
