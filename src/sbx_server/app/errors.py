from __future__ import annotations

"""
Exception hierarchy for SandboxManager.

Docker SDK and transport exceptions are translated into these types at the
runtime-client boundary; the HTTP layer maps them onto HTTPException.
"""

from typing import Dict, Optional


class SandboxError(Exception):
    """Base class for all SandboxManager errors."""


# -----------------------
# Runtime control plane
# -----------------------

class RuntimeClientError(SandboxError):
    """A container-runtime control-plane call failed."""


class RuntimeUnavailableError(RuntimeClientError):
    """The runtime daemon (or the socket proxy in front of it) could not be reached."""


class ResourceNotFoundError(RuntimeClientError):
    """The referenced container, network, volume or image does not exist."""

    def __init__(self, kind: str, name: str, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.name = name
        super().__init__(detail or f"{kind} not found: {name}")


class ResourceConflictError(RuntimeClientError):
    """A resource with the requested name already exists or is in use."""

    def __init__(self, kind: str, name: str, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.name = name
        super().__init__(detail or f"{kind} conflict: {name}")


class ServicesNotRunningError(RuntimeClientError):
    """Service containers are missing or not running after a start request."""

    def __init__(self, workspace_id: str, statuses: Dict[str, Optional[str]]) -> None:
        self.workspace_id = workspace_id
        self.statuses = dict(statuses)
        listed = ", ".join(f"{svc}={state or 'absent'}" for svc, state in sorted(self.statuses.items()))
        super().__init__(f"Services not running after start: {listed}")


# -----------------------
# Provisioning
# -----------------------

class ImagePullError(SandboxError):
    """
    One or more required images could not be pulled.

    `failures` maps image reference -> error message for every image that failed,
    not just the first one.
    """

    def __init__(self, failures: Dict[str, str]) -> None:
        self.failures = dict(failures)
        listed = "; ".join(f"{img}: {msg}" for img, msg in sorted(self.failures.items()))
        super().__init__(f"Failed to pull {len(self.failures)} image(s): {listed}")


class ProvisioningError(SandboxError):
    """A provisioning step failed irrecoverably for this attempt."""


class ConfigSynthesisError(ProvisioningError):
    """The owner's provider/skill records could not be turned into agent config."""


class CloneFailedError(ProvisioningError):
    """The init container exited non-zero while cloning the repository."""

    def __init__(self, exit_code: int, logs: str) -> None:
        self.exit_code = exit_code
        self.logs = logs
        message = f"Failed to clone repository. Exit code: {exit_code}"
        if logs:
            message = f"{message}\n{logs}"
        super().__init__(message)


class InitContainerTimeoutError(ProvisioningError):
    """The init container did not exit within the configured bound."""

    def __init__(self, timeout_s: float, logs: str) -> None:
        self.timeout_s = timeout_s
        self.logs = logs
        message = f"Repository clone did not finish within {timeout_s:g}s"
        if logs:
            message = f"{message}\n{logs}"
        super().__init__(message)


# -----------------------
# Record store
# -----------------------

class WorkspaceNotFoundError(SandboxError):
    """No workspace record exists for the id (or it belongs to another owner)."""

    def __init__(self, workspace_id: str) -> None:
        self.workspace_id = workspace_id
        super().__init__(f"Workspace not found: {workspace_id}")


class WorkspaceStateError(SandboxError):
    """The workspace is in a state that does not allow the requested transition."""

    def __init__(self, workspace_id: str, state: str, action: str) -> None:
        self.workspace_id = workspace_id
        self.state = state
        super().__init__(f"Cannot {action} workspace {workspace_id} while it is {state}")


__all__ = [
    "SandboxError",
    "RuntimeClientError",
    "RuntimeUnavailableError",
    "ResourceNotFoundError",
    "ResourceConflictError",
    "ServicesNotRunningError",
    "ImagePullError",
    "ProvisioningError",
    "ConfigSynthesisError",
    "CloneFailedError",
    "InitContainerTimeoutError",
    "WorkspaceNotFoundError",
    "WorkspaceStateError",
]
