from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment from optional .env file before instantiating settings
_SERVER_ENV_FILE = os.getenv("SBX_SERVER_ENV_FILE", ".env.server")
if _SERVER_ENV_FILE and Path(_SERVER_ENV_FILE).is_file():
    load_dotenv(_SERVER_ENV_FILE)

from sbx_server.app.config import ServerConfig, get_settings
from sbx_server.app.errors import RuntimeClientError
from sbx_server.app.logging_setup import initialize_from_env
from sbx_server.app.routers import workspaces
from sbx_server.app.runtime.client import DockerRuntimeClient, RuntimeClient
from sbx_server.app.store import InMemoryRecordStore, RecordStore
from sbx_server.app.workspaces.service import WorkspaceService

logger = logging.getLogger("sandbox_manager")
_LOG_PATH = initialize_from_env(service_name="sandbox_manager")
logger.info("SandboxManager logging to file: %s", _LOG_PATH)


async def ensure_runtime_available_on_startup(runtime: RuntimeClient) -> None:
    """
    Verify the container engine is reachable before the API starts serving.
    Exits the process with a non-zero status if it is not.
    """
    try:
        await runtime.ping()
    except RuntimeClientError as e:
        logger.critical(
            "Docker is not available. SandboxManager cannot start without Docker. "
            "Check SBX_DOCKER_HOST (or DOCKER_HOST) and the socket proxy. Details: %s",
            e,
        )
        raise SystemExit(1)


def create_app(
    settings: Optional[ServerConfig] = None,
    *,
    runtime: Optional[RuntimeClient] = None,
    store: Optional[RecordStore] = None,
) -> FastAPI:
    """
    Build the FastAPI app. Collaborators not passed in are created in the lifespan.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_runtime = app.state.runtime is None
        if owns_runtime:
            app.state.runtime = DockerRuntimeClient(
                base_url=settings.docker_host,
                timeout=settings.docker_client_timeout,
            )
        await ensure_runtime_available_on_startup(app.state.runtime)
        if app.state.store is None:
            app.state.store = InMemoryRecordStore()
        app.state.workspace_service = WorkspaceService(app.state.store, app.state.runtime, settings)
        logger.info(
            "SandboxManager startup complete (domain=%s shared_network=%s).",
            settings.domain,
            settings.shared_network,
        )
        try:
            yield
        finally:
            if owns_runtime:
                await app.state.runtime.close()
                app.state.runtime = None
            logger.info("SandboxManager shutdown complete.")

    app = FastAPI(
        title="SandboxManager",
        version=settings.service_version,
        description="Provisions and manages isolated agent + editor development sandboxes.",
        lifespan=lifespan,
    )

    # CORS: permissive by default; lock down in deployment via env vars if needed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.runtime = runtime
    app.state.store = store
    app.state.workspace_service = None

    app.include_router(workspaces.router, prefix="/workspaces", tags=["workspaces"])

    @app.get("/health")
    async def health() -> dict:
        """
        Basic liveness probe; intentionally unauthenticated.
        """
        return {
            "status": "ok",
            "service": "SandboxManager",
            "version": app.version,
        }

    return app


app = create_app()
