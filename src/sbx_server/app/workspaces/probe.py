from __future__ import annotations

"""
Readiness prober for workspace services.

One HEAD request to http://<container-name>:<port>/ over the shared network.
Any HTTP response (including 4xx/5xx) means the service is listening; a
timeout or transport error means it is not. The prober keeps no state between
calls.
"""

import asyncio
import logging
from typing import Callable, Dict, Mapping, Optional

import requests

from sbx_server.app.config import ServerConfig
from sbx_server.app.workspaces.core import SERVICE_AGENT, SERVICE_EDITOR, SERVICE_PREVIEW, WorkspaceNames

__all__ = ["ReadinessProber"]

logger = logging.getLogger("sandbox_manager")


class ReadinessProber:
    def __init__(
        self,
        ports: Mapping[str, int],
        *,
        timeout: float = 3.0,
        grace: float = 0.5,
        host_for: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.ports: Dict[str, int] = dict(ports)
        self.timeout = timeout
        self.grace = grace
        # Maps a container name to the host to dial; identity on the shared network.
        self.host_for = host_for or (lambda name: name)

    @classmethod
    def from_settings(cls, settings: ServerConfig) -> "ReadinessProber":
        return cls(
            {
                SERVICE_AGENT: settings.agent_port,
                SERVICE_PREVIEW: settings.preview_port,
                SERVICE_EDITOR: settings.editor_port,
            },
            timeout=settings.probe_timeout_seconds,
        )

    def probe_url(self, workspace_id: str, service: str) -> str:
        if service not in self.ports:
            raise ValueError(f"Unknown service: {service}")
        container = WorkspaceNames(workspace_id).container_for(service)
        return f"http://{self.host_for(container)}:{self.ports[service]}/"

    def _head(self, url: str) -> bool:
        try:
            resp = requests.head(url, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as exc:
            logger.debug("probe %s: not ready (%s)", url, exc.__class__.__name__)
            return False
        logger.debug("probe %s: HTTP %s", url, resp.status_code)
        return True

    async def probe(self, workspace_id: str, service: str) -> bool:
        """
        True if the service answered with any HTTP response within the timeout.
        """
        url = self.probe_url(workspace_id, service)
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._head, url), timeout=self.timeout + self.grace)
        except asyncio.TimeoutError:
            logger.debug("probe %s: timed out after %.1fs", url, self.timeout + self.grace)
            return False
