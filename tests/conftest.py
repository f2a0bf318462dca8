# Pytest configuration for SandboxManager tests.
# - Makes the src/ layout importable without an editable install.
# - Registers a "docker" marker for tests that require a running Docker daemon.
# - Automatically skips tests marked with @pytest.mark.docker when Docker is unavailable.

from __future__ import annotations

import contextlib
import dataclasses
import sys
from pathlib import Path
from typing import Tuple

import docker
import pytest


def _add_sys_path(p: Path) -> None:
    """
    Prepend a filesystem path to sys.path if it's not already present.
    """
    rp = str(p.resolve())
    if rp not in sys.path:
        sys.path.insert(0, rp)


_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_PROJECT_DIR = _TESTS_DIR.parent

_add_sys_path(_PROJECT_DIR / "src")
_add_sys_path(_TESTS_DIR)

from sbx_server.app.config import ServerConfig  # noqa: E402
from sbx_server.app.store import InMemoryRecordStore  # noqa: E402

from fakes import FakeRuntime  # noqa: E402


def _docker_available() -> Tuple[bool, str]:
    """
    Check if Docker daemon is reachable.
    Returns (available, reason_if_unavailable).
    """
    try:
        with contextlib.closing(docker.from_env()) as client:
            client.ping()
        return True, ""
    except Exception as e:
        return False, f"Docker daemon not reachable: {e} (ensure the Docker daemon is running; set DOCKER_HOST for a remote engine)"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "docker: mark test as requiring Docker (skipped if Docker is unavailable)",
    )
    available, reason = _docker_available()
    setattr(config, "_sbx_docker_available", available)
    setattr(config, "_sbx_docker_unavailable_reason", reason)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if getattr(config, "_sbx_docker_available", False):
        return
    skip_marker = pytest.mark.skip(reason=getattr(config, "_sbx_docker_unavailable_reason", "Docker daemon not reachable"))
    for item in items:
        if "docker" in item.keywords:
            item.add_marker(skip_marker)


# --------------------------
# Shared fixtures
# --------------------------

@pytest.fixture
def settings() -> ServerConfig:
    base = ServerConfig.from_env(dotenv=False)
    return dataclasses.replace(
        base,
        api_key=None,
        api_keys=[],
        domain="sbx.test",
        shared_network="sandbox_web",
        proxy_entrypoint="web",
        public_scheme="http",
        init_image="alpine/git:latest",
        editor_image="codercom/code-server:latest",
        agent_image="ghcr.io/anomalyco/opencode:latest",
        editor_cpu_limit="2",
        editor_mem_limit="2g",
        agent_cpu_limit="2",
        agent_mem_limit="4g",
        agent_port=3001,
        preview_port=5173,
        editor_port=8443,
        init_timeout_seconds=5,
        probe_timeout_seconds=0.5,
        stop_timeout_seconds=1,
    )


@pytest.fixture
def runtime(settings: ServerConfig) -> FakeRuntime:
    rt = FakeRuntime(shared_network=settings.shared_network)
    rt.images.update(settings.required_images())
    return rt


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()
