from __future__ import annotations

"""
Workspace service: the record-aware layer over the provisioner, lifecycle
controller and prober.

Status transitions:
    pending -> starting -> running          (create, success)
    pending -> starting -> error            (create, after rollback)
    running -> stopped -> running           (stop / start)
    stopped -> error                        (start, containers missing)
    *       -> (record deleted)             (delete, only after full teardown)

Ownership is checked on every lookup; a workspace owned by someone else is
reported as not found.
"""

import logging
from typing import Dict, List, Optional, Tuple

from sbx_server.app.config import ServerConfig
from sbx_server.app.errors import (
    RuntimeClientError,
    ServicesNotRunningError,
    WorkspaceNotFoundError,
    WorkspaceStateError,
)
from sbx_server.app.models import WorkspaceCreateRequest, WorkspaceRecord, WorkspaceState
from sbx_server.app.runtime.client import RuntimeClient
from sbx_server.app.store import RecordStore
from sbx_server.app.workspaces.core import (
    SERVICE_AGENT,
    SERVICE_EDITOR,
    SERVICE_PREVIEW,
    gen_editor_password,
    gen_workspace_id,
    hostname_for,
)
from sbx_server.app.workspaces.lifecycle import LifecycleController, TeardownReport
from sbx_server.app.workspaces.probe import ReadinessProber
from sbx_server.app.workspaces.provisioner import ProvisionRequest, WorkspaceProvisioner, redact

__all__ = ["WorkspaceService"]

logger = logging.getLogger("sandbox_manager")

_STARTABLE = (WorkspaceState.running, WorkspaceState.stopped)


class WorkspaceService:
    def __init__(
        self,
        store: RecordStore,
        runtime: RuntimeClient,
        settings: ServerConfig,
        *,
        lifecycle: Optional[LifecycleController] = None,
        provisioner: Optional[WorkspaceProvisioner] = None,
        prober: Optional[ReadinessProber] = None,
    ) -> None:
        self.store = store
        self.runtime = runtime
        self.settings = settings
        self.lifecycle = lifecycle or LifecycleController(runtime, stop_timeout=settings.stop_timeout_seconds)
        self.provisioner = provisioner or WorkspaceProvisioner(runtime, store, settings, lifecycle=self.lifecycle)
        self.prober = prober or ReadinessProber.from_settings(settings)

    # --------------------------
    # create
    # --------------------------

    async def register(self, owner_id: str, req: WorkspaceCreateRequest) -> WorkspaceRecord:
        """
        Create the `pending` record; no runtime resource exists yet.
        """
        record = await self.store.create_workspace(
            WorkspaceRecord(
                id=gen_workspace_id(),
                owner_id=owner_id,
                name=req.name,
                repo_url=req.repo_url,
                branch=req.branch,
                status=WorkspaceState.pending,
                editor_password=gen_editor_password(),
            )
        )
        logger.info("Workspace %s registered for owner=%s", record.id, owner_id)
        return record

    async def provision(self, record: WorkspaceRecord, upstream_token: Optional[str] = None) -> WorkspaceRecord:
        """
        Provision a registered workspace and return the `running` record.

        On failure the record is left in `error` (with the message) and the
        provisioning exception propagates.
        """
        record = await self.store.update_workspace(record.id, status=WorkspaceState.starting)
        try:
            result = await self.provisioner.provision(
                ProvisionRequest(
                    workspace_id=record.id,
                    owner_id=record.owner_id,
                    repo_url=record.repo_url,
                    branch=record.branch,
                    editor_password=record.editor_password or "",
                    upstream_token=upstream_token,
                )
            )
        except Exception as exc:
            message = redact(str(exc), upstream_token)
            await self.store.update_workspace(record.id, status=WorkspaceState.error, error_message=message)
            logger.error("Workspace %s provisioning failed: %s", record.id, message.splitlines()[0] if message else exc)
            raise

        return await self.store.update_workspace(
            record.id,
            status=WorkspaceState.running,
            container_id=result.agent_container_id,
            error_message=None,
        )

    async def create(self, owner_id: str, req: WorkspaceCreateRequest) -> WorkspaceRecord:
        record = await self.register(owner_id, req)
        return await self.provision(record, req.upstream_token)

    # --------------------------
    # read
    # --------------------------

    async def get(self, owner_id: str, workspace_id: str) -> Tuple[WorkspaceRecord, Dict[str, Optional[str]]]:
        record = await self.store.get_workspace(workspace_id, owner_id=owner_id)
        containers = await self.lifecycle.status(workspace_id)
        return record, containers

    async def list_workspaces(self, owner_id: str) -> List[WorkspaceRecord]:
        return await self.store.list_workspaces(owner_id)

    def urls(self, workspace_id: str) -> Dict[str, str]:
        scheme = self.settings.public_scheme
        domain = self.settings.domain
        return {
            svc: f"{scheme}://{hostname_for(svc, workspace_id, domain)}"
            for svc in (SERVICE_AGENT, SERVICE_PREVIEW, SERVICE_EDITOR)
        }

    async def workspace_urls(self, owner_id: str, workspace_id: str) -> Dict[str, str]:
        await self.store.get_workspace(workspace_id, owner_id=owner_id)
        return self.urls(workspace_id)

    async def health(self, owner_id: str, workspace_id: str, service: str) -> bool:
        await self.store.get_workspace(workspace_id, owner_id=owner_id)
        return await self.prober.probe(workspace_id, service)

    # --------------------------
    # lifecycle
    # --------------------------

    async def stop(self, owner_id: str, workspace_id: str) -> WorkspaceRecord:
        await self.store.get_workspace(workspace_id, owner_id=owner_id)
        await self.lifecycle.stop(workspace_id)
        return await self.store.update_workspace(workspace_id, status=WorkspaceState.stopped)

    async def start(self, owner_id: str, workspace_id: str) -> WorkspaceRecord:
        """
        Start both service containers of a `running` or `stopped` workspace.

        Raises:
            WorkspaceStateError for `pending`, `starting` or `error` records.
            ServicesNotRunningError if either container is absent or not running
            afterwards; the record is moved to `error`.
        """
        record = await self.store.get_workspace(workspace_id, owner_id=owner_id)
        if record.status not in _STARTABLE:
            raise WorkspaceStateError(workspace_id, record.status.value, "start")

        await self.lifecycle.start(workspace_id)
        statuses = await self.lifecycle.status(workspace_id)
        if any(state != "running" for state in statuses.values()):
            exc = ServicesNotRunningError(workspace_id, statuses)
            await self.store.update_workspace(workspace_id, status=WorkspaceState.error, error_message=str(exc))
            logger.error("Workspace %s start failed: %s", workspace_id, exc)
            raise exc
        return await self.store.update_workspace(workspace_id, status=WorkspaceState.running, error_message=None)

    async def delete(self, owner_id: str, workspace_id: str) -> bool:
        """
        Tear down every resource, then drop the record.

        Returns False when no record exists (repeat deletes are no-ops).

        Raises:
            RuntimeClientError if any resource survived teardown; the record is
            kept (status `error`) so the delete can be retried.
        """
        try:
            await self.store.get_workspace(workspace_id, owner_id=owner_id)
        except WorkspaceNotFoundError:
            logger.debug("Delete of unknown workspace %s; nothing to do", workspace_id)
            return False

        report: TeardownReport = await self.lifecycle.remove(workspace_id)
        if not report.ok:
            leftover = ", ".join(f"{s.kind} {s.name}" for s in report.failures)
            await self.store.update_workspace(
                workspace_id,
                status=WorkspaceState.error,
                error_message=f"Teardown incomplete: {leftover}",
            )
            raise RuntimeClientError(f"Failed to remove workspace {workspace_id}: {leftover}")

        await self.store.delete_workspace(workspace_id)
        logger.info("Workspace %s deleted", workspace_id)
        return True
