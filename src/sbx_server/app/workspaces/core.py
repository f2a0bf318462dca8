from __future__ import annotations

"""
Core helpers for workspace utilities: ids, labels, and resource naming.

Every runtime resource a workspace owns is derived from its id alone, so any
observer (including cleanup after a lost record) can reconstruct the full set
of names from the id. This module is free of I/O.

Contents:
- Labels used to mark managed resources
- Workspace ID and editor passphrase generation
- Identifier-derived resource names and hostnames
"""

from dataclasses import dataclass
from typing import Dict, List

import secrets
import uuid

# --------------------------
# Labels (public constants)
# --------------------------

LABEL_MANAGED = "sbx.managed"
LABEL_WORKSPACE_ID = "workspace.id"
LABEL_ROLE = "workspace.role"

ROLE_INIT = "init"
ROLE_AGENT = "agent"
ROLE_EDITOR = "editor"
ROLE_DATA = "data"
ROLE_AGENT_STATE = "agent-state"
ROLE_NETWORK = "network"

# Route / service prefixes. These appear in user-facing hostnames and must stay
# stable across restarts.
SERVICE_AGENT = "agent"
SERVICE_PREVIEW = "preview"
SERVICE_EDITOR = "editor"


def resource_labels(workspace_id: str, role: str) -> Dict[str, str]:
    """
    Labels attached to every resource owned by a workspace.
    """
    return {
        LABEL_MANAGED: "true",
        LABEL_WORKSPACE_ID: workspace_id,
        LABEL_ROLE: role,
    }


# --------------------------
# Workspace IDs / secrets
# --------------------------

def gen_workspace_id() -> str:
    """
    Generate a globally unique, URL-safe and DNS-label-safe workspace id.
    """
    return uuid.uuid4().hex


def gen_editor_password() -> str:
    """
    Generate the editor-access passphrase for a new workspace.
    """
    return secrets.token_urlsafe(18)


# --------------------------
# Resource naming
# --------------------------

@dataclass(frozen=True)
class WorkspaceNames:
    """
    Every resource name derived from a workspace id.
    """

    workspace_id: str

    @property
    def network(self) -> str:
        return f"workspace-{self.workspace_id}"

    @property
    def data_volume(self) -> str:
        return f"workspace-{self.workspace_id}-data"

    @property
    def agent_state_volume(self) -> str:
        return f"workspace-{self.workspace_id}-agent-state"

    @property
    def init_container(self) -> str:
        return f"init-{self.workspace_id}"

    @property
    def agent_container(self) -> str:
        return f"{SERVICE_AGENT}-{self.workspace_id}"

    @property
    def editor_container(self) -> str:
        return f"{SERVICE_EDITOR}-{self.workspace_id}"

    @property
    def service_containers(self) -> List[str]:
        return [self.editor_container, self.agent_container]

    @property
    def volumes(self) -> List[str]:
        return [self.data_volume, self.agent_state_volume]

    def container_for(self, service: str) -> str:
        """
        Container that serves a route prefix; the preview route is served by the agent.
        """
        if service in (SERVICE_AGENT, SERVICE_PREVIEW):
            return self.agent_container
        if service == SERVICE_EDITOR:
            return self.editor_container
        raise ValueError(f"Unknown service: {service}")


def hostname_for(service: str, workspace_id: str, domain: str) -> str:
    """
    Public hostname for a service route, e.g. agent-<id>.example.com.
    """
    return f"{service}-{workspace_id}.{domain}"


__all__ = [
    "LABEL_MANAGED",
    "LABEL_WORKSPACE_ID",
    "LABEL_ROLE",
    "ROLE_INIT",
    "ROLE_AGENT",
    "ROLE_EDITOR",
    "ROLE_DATA",
    "ROLE_AGENT_STATE",
    "ROLE_NETWORK",
    "SERVICE_AGENT",
    "SERVICE_PREVIEW",
    "SERVICE_EDITOR",
    "resource_labels",
    "gen_workspace_id",
    "gen_editor_password",
    "WorkspaceNames",
    "hostname_for",
]
